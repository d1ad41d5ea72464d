import logging
from typing import Dict, List, Optional

from naisd.errors import DependencyNotFound, DeployError, RegistryUnavailable, ValidationError
from naisd.manifest import ExposedResource, Manifest, UsedResource
from naisd.model import (TYPE_APPLICATION_PROPERTIES, TYPE_CERTIFICATE, TYPE_LOAD_BALANCER_CONFIG, DeploymentRequest,
                         NaisResource, Scope)
from naisd.registry import RegistryClient, build_resource_payload

APPLICATION_PROPERTIES_KEY = "applicationProperties"


def explode_application_properties(properties: Dict[str, str], alias: str) -> Dict[str, str]:
    exploded = {k: v for k, v in properties.items() if k != APPLICATION_PROPERTIES_KEY}
    block = properties.get(APPLICATION_PROPERTIES_KEY, "")
    for line in block.split("\r\n"):
        if not line:
            continue
        if "=" not in line:
            raise RegistryUnavailable(f"malformed application property line {line!r}", alias,
                                      TYPE_APPLICATION_PROPERTIES)
        key, value = line.split("=", 1)
        exploded[key] = value
    return exploded


def parse_file_descriptor(files: dict, alias: str):
    keystore = files.get("keystore")
    if not isinstance(keystore, dict):
        keystore = {}
    filename = keystore.get("filename")
    ref = keystore.get("ref")
    if not filename:
        raise RegistryUnavailable(f"Error parsing registry json. Filename not found: {files}", alias,
                                  TYPE_CERTIFICATE)
    if not ref:
        raise RegistryUnavailable(f"Error parsing registry json. Fileurl not found: {files}", alias,
                                  TYPE_CERTIFICATE)
    return filename, ref


def parse_load_balancer_config(configs: List[dict]) -> Dict[str, str]:
    ingresses = {}
    for config in configs:
        properties = config.get("properties") if isinstance(config, dict) else None
        if not isinstance(properties, dict):
            properties = {}
        host = properties.get("url")
        if not host:
            logging.warning(f"no host found for loadbalancer config: {config}")
            continue
        ingresses[host] = properties.get("contextRoots") or ""
    return ingresses


def _mapping(raw: dict, key: str, request: UsedResource) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise RegistryUnavailable(f"Unable to map response to resource: {key} is not an object", request.alias,
                                  request.resource_type)
    return value


class DependencyResolver:
    def __init__(self, client: RegistryClient):
        self.client = client

    def resolve_used(self, used: List[UsedResource], environment: str, application: str,
                     zone: str) -> List[NaisResource]:
        resources = []
        for request in used:
            try:
                raw = self.client.get_scoped_resource(request.alias, request.resource_type, environment,
                                                      application, zone)
                resources.append(self._to_nais_resource(raw, request))
            except RegistryUnavailable as e:
                if e.alias:
                    raise
                raise RegistryUnavailable(e.message, request.alias, request.resource_type) from e
        return resources

    def _to_nais_resource(self, raw: dict, request: UsedResource) -> NaisResource:
        if not isinstance(raw, dict):
            raise RegistryUnavailable(f"Unable to map response to resource: {raw!r}", request.alias,
                                      request.resource_type)
        alias = raw.get("alias") or request.alias
        resource_type = raw.get("type") or request.resource_type
        properties = dict(_mapping(raw, "properties", request))

        secrets = {}
        for key, secret in _mapping(raw, "secrets", request).items():
            ref = secret.get("ref") if isinstance(secret, dict) else None
            if not ref:
                raise RegistryUnavailable(f"secret {key} has no reference", request.alias, request.resource_type)
            secrets[key] = self.client.get_secret(ref)

        certificates = {}
        if resource_type == TYPE_CERTIFICATE and raw.get("files"):
            filename, ref = parse_file_descriptor(_mapping(raw, "files", request), alias)
            certificates[filename] = self.client.get_file(ref)
        elif resource_type == TYPE_APPLICATION_PROPERTIES:
            properties = explode_application_properties(properties, alias)

        scope = _mapping(raw, "scope", request)
        try:
            return NaisResource(
                id=raw.get("id") or 0,
                name=alias,
                resource_type=resource_type,
                scope=Scope(environment=scope.get("environment") or "", zone=scope.get("zone") or ""),
                properties=properties,
                property_map=request.property_map,
                secrets=secrets,
                certificates=certificates,
            )
        except ValueError as e:
            raise RegistryUnavailable(f"Unable to map response to resource: {e}", request.alias,
                                      request.resource_type) from e

    def load_balancer_config(self, application: str, environment: str) -> Optional[NaisResource]:
        try:
            ingresses = parse_load_balancer_config(self.client.get_load_balancer_config(application, environment))
        except DeployError as e:
            logging.warning(f"failed getting loadbalancer config for application {application} "
                            f"in environment {environment}: {e}")
            return None

        if not ingresses:
            return None
        return NaisResource(resource_type=TYPE_LOAD_BALANCER_CONFIG, ingresses=ingresses)

    def resolve(self, manifest: Manifest, request: DeploymentRequest, environment: str) -> List[NaisResource]:
        resources = self.resolve_used(manifest.registry_resources.used, environment, request.application,
                                      request.zone)
        lb = self.load_balancer_config(request.application, environment)
        if lb is not None:
            resources.append(lb)
        return resources

    def publish_exposed(self, exposed: List[ExposedResource], hostname: str, environment: str,
                        request: DeploymentRequest) -> List[int]:
        ids = []
        for resource in exposed:
            payload = build_resource_payload(resource, environment, request.zone, hostname)
            if payload is None:
                raise ValidationError([("Exposed resource type is not supported",
                                        {"Alias": resource.alias, "ResourceType": resource.resource_type})])
            try:
                existing = self.client.get_scoped_resource(resource.alias, resource.resource_type, environment,
                                                           request.application, request.zone)
            except DependencyNotFound:
                existing = None

            existing_id = None
            if existing is not None:
                existing_id = existing.get("id") if isinstance(existing, dict) else None
                if not existing_id:
                    raise RegistryUnavailable(f"Registry returned resource {resource.alias} of type "
                                              f"{resource.resource_type} without an id: {existing!r}")

            try:
                if existing is None:
                    ids.append(self.client.create_resource(payload))
                else:
                    ids.append(self.client.update_resource(existing_id, payload))
            except RegistryUnavailable as e:
                action = "creating" if existing is None else "updating"
                raise RegistryUnavailable(f"Failed {action} resource: {resource.alias} of type "
                                          f"{resource.resource_type} with path {resource.path}. ({e})") from e
        return ids

    def sync_registry(self, manifest: Manifest, request: DeploymentRequest, resources: List[NaisResource],
                      hostname: str, environment: str):
        used_ids = [r.id for r in resources if r.resource_type != TYPE_LOAD_BALANCER_CONFIG]
        exposed_ids = []

        exposed = manifest.registry_resources.exposed
        if exposed:
            if not hostname:
                raise ValidationError([("Unable to create resources when no ingress nor loadbalancer is specified.",
                                        {"Application": request.application})])
            exposed_ids = self.publish_exposed(exposed, hostname, environment, request)

        self.client.register_application_instance(request.application, environment, request.version, exposed_ids,
                                                  used_ids)
