from unittest.mock import MagicMock

import pytest
import requests

from naisd.config import Settings
from naisd.errors import TransportError, ValidationError
from naisd.manifest import ManifestSource, default_manifest, merge_manifest, parse_manifest, validate_manifest
from naisd.model import DeploymentRequest

from tests.conftest import BASE_MANIFEST


def response(status_code=200, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    return resp


class TestMergeManifest:

    def test_missing_keys_come_from_defaults(self):
        merged = merge_manifest({"image": "myimage", "replicas": {"max": 10}}, default_manifest("appname"))

        assert merged["image"] == "myimage"
        assert merged["replicas"] == {"min": 2, "max": 10, "cpuThresholdPercentage": 50}
        assert merged["port"] == 8080
        assert merged["healthcheck"]["liveness"]["path"] == "isAlive"

    def test_defaults_are_not_mutated(self):
        defaults = default_manifest("appname")
        merge_manifest({"healthcheck": {"liveness": {"path": "custom"}}}, defaults)

        assert defaults["healthcheck"]["liveness"]["path"] == "isAlive"

    def test_lists_are_replaced_whole(self):
        merged = merge_manifest({"alerts": [{"alert": "b"}]}, {"alerts": [{"alert": "a"}, {"alert": "c"}]})

        assert merged["alerts"] == [{"alert": "b"}]

    def test_default_image_uses_application(self):
        manifest = parse_manifest(merge_manifest({}, default_manifest("appname")))

        assert manifest.image == "docker.io/nais/appname"
        assert validate_manifest(manifest) == []

    def test_camel_case_keys(self):
        manifest = parse_manifest(merge_manifest({
            "preStopHookPath": "/stop",
            "leaderElection": True,
            "registryResources": {"used": [{"alias": "db", "resourceType": "datasource",
                                            "propertyMap": {"url": "DB_URL"}}]},
        }, BASE_MANIFEST))

        assert manifest.pre_stop_hook_path == "/stop"
        assert manifest.leader_election
        assert manifest.registry_resources.used[0].property_map == {"url": "DB_URL"}

    def test_fasit_resources_key(self):
        manifest = parse_manifest(merge_manifest({
            "image": "docker.io/nais/app",
            "fasitResources": {
                "used": [{"alias": "db", "resourceType": "datasource"}],
                "exposed": [{"alias": "api", "resourceType": "RestService", "path": "/api"}],
            },
        }, default_manifest("app")))

        assert [r.alias for r in manifest.registry_resources.used] == ["db"]
        assert manifest.registry_resources.exposed[0].path == "/api"
        assert validate_manifest(manifest) == []

    def test_wrong_type_is_validation_error(self):
        with pytest.raises(ValidationError) as e:
            parse_manifest({"port": "not a number"})

        assert "port" in str(e.value)


class TestValidateManifest:

    def issues(self, make_manifest, **overrides):
        return [message for message, _ in validate_manifest(make_manifest(**overrides))]

    def test_base_manifest_is_valid(self, manifest):
        assert validate_manifest(manifest) == []

    def test_image_with_tag(self, make_manifest):
        assert self.issues(make_manifest, image="docker.hub/app:1.0") == ["Image cannot contain tag"]

    def test_registry_port_is_not_a_tag(self, make_manifest):
        assert self.issues(make_manifest, image="registry:5000/app") == []

    def test_min_larger_than_max(self, make_manifest):
        issues = self.issues(make_manifest, replicas={"min": 2, "max": 1})

        assert issues == ["Replicas.Min is larger than Replicas.Max."]

    def test_replicas_not_set(self, make_manifest):
        issues = self.issues(make_manifest, replicas={"min": 0, "max": 0})

        assert "Replicas.Max is not set" in issues
        assert "Replicas.Min is not set" in issues

    @pytest.mark.parametrize("threshold", [5, 91])
    def test_cpu_threshold_bounds(self, make_manifest, threshold):
        issues = self.issues(make_manifest, replicas={"cpuThresholdPercentage": threshold})

        assert issues == ["CpuThreshold must be between 10 and 90."]

    def test_quantities(self, make_manifest):
        assert self.issues(make_manifest, resources={"requests": {"memory": "200Foo"}}) == [
            "Not a valid memory value. Are you using correct notation?"]
        assert self.issues(make_manifest, resources={"limits": {"cpu": "two"}}) == [
            "Not a valid cpu value. Are you using correct notation?"]
        assert self.issues(make_manifest, resources={"limits": {"cpu": "1.5", "memory": "1Gi"}}) == []

    def test_resources_need_alias_and_type(self, make_manifest):
        issues = self.issues(make_manifest, registryResources={"used": [{"alias": "db"}]})

        assert issues == ["Alias and ResourceType must be specified"]

    def test_alert_rules(self, make_manifest):
        rule = {"alert": "down", "expr": "up == 0", "for": "5m", "annotations": {"action": "restart"}}
        assert self.issues(make_manifest, alerts=[rule]) == []

        assert self.issues(make_manifest, alerts=[dict(rule, annotations={})]) == [
            "An action annotation must be specified"]
        assert self.issues(make_manifest, alerts=[dict(rule, **{"for": "soon"})]) == [
            "Alert.For is not a valid duration"]

    def test_all_issues_reported_together(self, make_manifest):
        error = ValidationError(validate_manifest(make_manifest(image="app:1", replicas={"min": 5, "max": 4})))

        assert str(error) == ("Image cannot contain tag\n"
                              " - Image: app:1.\n"
                              "Replicas.Min is larger than Replicas.Max.\n"
                              " - Replicas.Max: 4.\n"
                              " - Replicas.Min: 5.\n")


class TestManifestSource:

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def source(self, session):
        settings = Settings(manifest_url_templates=["http://first/{application}/{version}",
                                                    "http://second/{application}-{version}.yaml"])
        return ManifestSource(settings, session_factory=lambda settings: session)

    def test_explicit_url_only(self, source):
        request = DeploymentRequest(application="app", version="1", manifestUrl="http://repo/nais.yaml")

        assert source.urls(request) == ["http://repo/nais.yaml"]

    def test_default_urls(self, source):
        request = DeploymentRequest(application="app", version="1")

        assert source.urls(request) == ["http://first/app/1", "http://second/app-1.yaml"]

    def test_falls_back_to_next_url(self, source, session):
        session.get.side_effect = [response(404), response(200, "image: docker.hub/app\nport: 1234\n")]

        document = source.download(DeploymentRequest(application="app", version="1"))

        assert document == {"image": "docker.hub/app", "port": 1234}
        assert session.get.call_count == 2
        session.close.assert_called_once_with()

    def test_all_urls_fail(self, source, session):
        session.get.side_effect = [requests.ConnectionError("refused"), response(500)]

        with pytest.raises(TransportError) as e:
            source.download(DeploymentRequest(application="app", version="1"))

        assert "http://first/app/1" in str(e.value)
        assert "got HTTP status code 500" in str(e.value)

    def test_invalid_yaml(self, source, session):
        session.get.return_value = response(200, "image: [unclosed")

        with pytest.raises(TransportError):
            source.fetch(session, "http://first/app/1")

    def test_empty_document_uses_defaults(self, source, session):
        session.get.return_value = response(200, "")

        manifest = source.load(DeploymentRequest(application="app", version="1", manifestUrl="http://m"))

        assert manifest.image == "docker.io/nais/app"
        assert manifest.replicas.min == 2

    def test_load_rejects_invalid_manifest(self, source):
        with pytest.raises(ValidationError) as e:
            source.load(DeploymentRequest(application="app"), {"replicas": {"min": 5, "max": 4}})

        assert e.value.status_code == 400
