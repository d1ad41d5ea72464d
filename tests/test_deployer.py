from unittest.mock import MagicMock

import pytest

from naisd.deployer import Deployer, exposed_hostname
from naisd.errors import ReconcileError, RegistryUnavailable, ValidationError
from naisd.model import DeploymentRequest, NaisResource, ResourceKind

from tests.conftest import APP_NAME, NAMESPACE


@pytest.fixture
def manifest_source(manifest):
    source = MagicMock()
    source.load.return_value = manifest
    return source


@pytest.fixture
def registry():
    registry = MagicMock()
    registry.get_load_balancer_config.return_value = []
    return registry


@pytest.fixture
def registry_factory(registry):
    return MagicMock(return_value=registry)


@pytest.fixture
def deployer(settings, cluster, manifest_source, registry_factory):
    return Deployer(settings, cluster, manifest_source, registry_factory)


class TestDeploy:

    def test_invalid_request(self, deployer, manifest_source):
        with pytest.raises(ValidationError) as e:
            deployer.deploy(DeploymentRequest(skipRegistry=True))

        assert "application is required and is empty" in str(e.value)
        manifest_source.load.assert_not_called()

    def test_skip_registry(self, deployer, cluster, registry_factory):
        request = DeploymentRequest(application=APP_NAME, version="1", zone="fss", namespace=NAMESPACE,
                                    skipRegistry=True)

        result = deployer.deploy(request)

        registry_factory.assert_not_called()
        assert result.get(ResourceKind.DEPLOYMENT).action == "created"
        env = {v.name: v.value for v in cluster.stored(ResourceKind.DEPLOYMENT, APP_NAME, NAMESPACE)
               .spec.template.spec.containers[0].env}
        assert env["APP_ENVIRONMENT"] == "namespace-test-cluster"

    def test_with_registry(self, deployer, deployment_request, make_manifest, registry, registry_factory):
        registry.get_scoped_resource.return_value = {"id": 5, "alias": "db", "type": "datasource",
                                                     "properties": {"url": "jdbc:db"}}
        deployer.manifest_source.load.return_value = make_manifest(
            registryResources={"used": [{"alias": "db", "resourceType": "datasource"}]})

        result = deployer.deploy(deployment_request)

        registry_factory.assert_called_once_with(deployment_request)
        registry.get_environment.assert_called_once_with("t0")
        registry.get_application.assert_called_once_with(APP_NAME)
        registry.register_application_instance.assert_called_once_with(APP_NAME, "t0", "13", [], [5])
        registry.close.assert_called_once_with()
        assert result.get(ResourceKind.DEPLOYMENT) is not None

    def test_unknown_environment_stops_before_writes(self, deployer, deployment_request, registry, cluster):
        registry.get_environment.side_effect = RegistryUnavailable("Could not find environment t0 in registry")

        with pytest.raises(RegistryUnavailable):
            deployer.deploy(deployment_request)

        assert cluster.writes == []
        registry.close.assert_called_once_with()

    def test_registry_sync_failure_keeps_applied(self, deployer, deployment_request, registry):
        registry.register_application_instance.side_effect = RegistryUnavailable("Registry returned: (500)")

        with pytest.raises(ReconcileError) as e:
            deployer.deploy(deployment_request)

        assert "created deployment" in e.value.result.lines()
        registry.close.assert_called_once_with()

    def test_exposed_resource_reply_without_id(self, deployer, deployment_request, make_manifest, registry):
        deployer.manifest_source.load.return_value = make_manifest(
            registryResources={"exposed": [{"alias": "api", "resourceType": "RestService", "path": "/api"}]})
        registry.get_scoped_resource.return_value = {"alias": "api"}

        with pytest.raises(ReconcileError) as e:
            deployer.deploy(deployment_request)

        assert isinstance(e.value.cause, RegistryUnavailable)
        assert e.value.result.lines() == [
            "created namespace",
            "created serviceaccount",
            "created rolebinding",
            "created deployment",
            "created service",
            "created ingress",
            "created autoscaler",
        ]
        registry.register_application_instance.assert_not_called()


class TestExposedHostname:

    def test_ingress_host(self, deployment_request, manifest, settings):
        assert exposed_hostname(deployment_request, manifest, [], settings) == f"{APP_NAME}-{NAMESPACE}.nais.example.yo"

    def test_load_balancer_host_when_ingress_disabled(self, deployment_request, make_manifest, settings):
        resources = [NaisResource(resource_type="LoadBalancerConfig", ingresses={"app.adeo.no": "app"})]

        assert exposed_hostname(deployment_request, make_manifest(ingress={"disabled": True}), resources,
                                settings) == "app.adeo.no"

    def test_no_hostname(self, deployment_request, make_manifest, settings):
        assert exposed_hostname(deployment_request, make_manifest(ingress={"disabled": True}), [], settings) == ""
