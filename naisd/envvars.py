from typing import Dict, List

from kubernetes import client

from naisd.errors import NameCollision
from naisd.manifest import Manifest
from naisd.model import TYPE_APPLICATION_PROPERTIES, TYPE_LOAD_BALANCER_CONFIG, DeploymentRequest, NaisResource
from naisd.naming import env_var_name, sanitize, secret_key_name

CERTIFICATE_MOUNT_PATH = "/var/run/secrets/naisd.io/"
ELECTOR_PATH = "localhost:4040"

BUILT_IN = "built-in variables"


def resource_env_name(resource: NaisResource, key: str) -> str:
    if key in resource.property_map:
        return resource.property_map[key]
    if resource.resource_type == TYPE_APPLICATION_PROPERTIES:
        return sanitize(key)
    return env_var_name(resource.name, key)


def secret_ref(application: str, key: str) -> client.V1EnvVarSource:
    return client.V1EnvVarSource(
        secret_key_ref=client.V1SecretKeySelector(name=application, key=key)
    )


class EnvironmentBuilder:

    def __init__(self):
        self.variables: List[client.V1EnvVar] = []
        self.sources: Dict[str, str] = {}

    def add(self, variable: client.V1EnvVar, source: str):
        if variable.name in self.sources:
            raise NameCollision(variable.name, self.sources[variable.name], source)
        self.sources[variable.name] = source
        self.variables.append(variable)

    def add_resource(self, application: str, resource: NaisResource):
        source = f"{resource.name} ({resource.resource_type})"

        for key in sorted(resource.properties):
            self.add(client.V1EnvVar(name=resource_env_name(resource, key), value=resource.properties[key]), source)

        for key in sorted(resource.secrets):
            self.add(client.V1EnvVar(name=resource_env_name(resource, key),
                                     value_from=secret_ref(application, secret_key_name(resource.name, key))),
                     source)

        for key in sorted(resource.certificates):
            name = resource_env_name(resource, key)
            secret_key = secret_key_name(resource.name, key)
            self.add(client.V1EnvVar(name=name, value_from=secret_ref(application, secret_key)), source)
            self.add(client.V1EnvVar(name=f"{name}_PATH", value=CERTIFICATE_MOUNT_PATH + secret_key), source)


def create_environment_variables(request: DeploymentRequest, manifest: Manifest, resources: List[NaisResource],
                                 environment: str) -> List[client.V1EnvVar]:
    builder = EnvironmentBuilder()
    builder.add(client.V1EnvVar(name="APP_NAME", value=request.application), BUILT_IN)
    builder.add(client.V1EnvVar(name="APP_VERSION", value=request.version), BUILT_IN)
    builder.add(client.V1EnvVar(name="APP_ENVIRONMENT", value=environment), BUILT_IN)
    if manifest.leader_election:
        builder.add(client.V1EnvVar(name="ELECTOR_PATH", value=ELECTOR_PATH), BUILT_IN)

    for resource in resources:
        if resource.resource_type == TYPE_LOAD_BALANCER_CONFIG:
            continue
        builder.add_resource(request.application, resource)

    return builder.variables
