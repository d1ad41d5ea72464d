"""
Shared test fixtures: an in-memory cluster object store and default inputs.
"""
import copy

import pytest

from naisd.config import Settings
from naisd.errors import ClusterApiError
from naisd.manifest import merge_manifest, parse_manifest
from naisd.model import DeploymentRequest, NaisResource, ResourceKind, Scope

APP_NAME = "appname"
NAMESPACE = "namespace"
IMAGE = "docker.hub/app"
PORT = 6900
VERSION = "13"
RESOURCE_VERSION = "12369"


class FakeCluster:
    """Keeps objects in memory and enforces resource versions like the API server."""

    def __init__(self):
        self.objects = {}
        self.writes = []
        self.fail_on = {}
        self._version = 1000

    def _key(self, kind, name, namespace):
        return kind, None if kind == ResourceKind.NAMESPACE else namespace, name

    def add(self, kind, obj, resource_version=RESOURCE_VERSION):
        obj = copy.deepcopy(obj)
        obj.metadata.resource_version = resource_version
        self.objects[self._key(kind, obj.metadata.name, obj.metadata.namespace)] = obj
        return obj

    def stored(self, kind, name, namespace=None):
        return self.objects.get(self._key(kind, name, namespace))

    def get(self, kind, name, namespace=None):
        found = self.stored(kind, name, namespace)
        return copy.deepcopy(found) if found is not None else None

    def _next_version(self):
        self._version += 1
        return str(self._version)

    def create(self, kind, body):
        name, namespace = body.metadata.name, body.metadata.namespace
        if kind in self.fail_on:
            raise self.fail_on[kind]
        key = self._key(kind, name, namespace)
        if key in self.objects:
            raise ClusterApiError("create", kind.value, name, namespace, 409, "AlreadyExists")
        self.writes.append(("created", kind, copy.deepcopy(body)))
        stored = copy.deepcopy(body)
        stored.metadata.resource_version = self._next_version()
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def update(self, kind, body):
        name, namespace = body.metadata.name, body.metadata.namespace
        if kind in self.fail_on:
            raise self.fail_on[kind]
        key = self._key(kind, name, namespace)
        existing = self.objects.get(key)
        if existing is None:
            raise ClusterApiError("update", kind.value, name, namespace, 404, "NotFound")
        if body.metadata.resource_version != existing.metadata.resource_version:
            raise ClusterApiError("update", kind.value, name, namespace, 409, "Conflict")
        self.writes.append(("updated", kind, copy.deepcopy(body)))
        stored = copy.deepcopy(body)
        stored.metadata.resource_version = self._next_version()
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def written(self, kind):
        return [body for _, written_kind, body in self.writes if written_kind == kind]


BASE_MANIFEST = {
    "team": "teamname",
    "image": IMAGE,
    "port": PORT,
    "healthcheck": {
        "liveness": {"path": "isAlive", "initialDelay": 20, "periodSeconds": 10, "failureThreshold": 3},
        "readiness": {"path": "isReady", "initialDelay": 20, "periodSeconds": 10, "failureThreshold": 3},
    },
    "resources": {
        "requests": {"cpu": "100m", "memory": "200Mi"},
        "limits": {"cpu": "200m", "memory": "400Mi"},
    },
    "prometheus": {"enabled": True, "path": "/path"},
    "replicas": {"min": 2, "max": 4, "cpuThresholdPercentage": 69},
}


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def settings() -> Settings:
    return Settings(cluster_subdomain="nais.example.yo", cluster_name="test-cluster")


@pytest.fixture
def deployment_request() -> DeploymentRequest:
    return DeploymentRequest(
        application=APP_NAME,
        version=VERSION,
        environment="t0",
        zone="fss",
        namespace=NAMESPACE,
        registryUsername="username",
        registryPassword="password",
    )


@pytest.fixture
def make_manifest():
    def make(**overrides):
        return parse_manifest(merge_manifest(overrides, BASE_MANIFEST))
    return make


@pytest.fixture
def manifest(make_manifest):
    return make_manifest()


def nais_resource(name, resource_type="db", properties=None, secrets=None, certificates=None, property_map=None,
                  resource_id=1):
    return NaisResource(
        id=resource_id,
        name=name,
        resource_type=resource_type,
        scope=Scope(environment="u1", zone="fss"),
        properties=properties or {},
        secrets=secrets or {},
        certificates=certificates or {},
        property_map=property_map or {},
    )
