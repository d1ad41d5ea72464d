import logging
from typing import List, Optional

import requests

from naisd.errors import DependencyNotFound, RegistryUnavailable
from naisd.metrics import REGISTRY_ERRORS, REGISTRY_REQUESTS


class RegistryClient:
    def __init__(self, base_url: str, session: requests.Session, timeout: float, username: str = "",
                 password: str = ""):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout
        self.auth = (username, password) if username else None

    def close(self):
        self.session.close()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, auth=self.auth, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            REGISTRY_ERRORS.labels("contact_registry").inc()
            raise RegistryUnavailable(f"Error contacting registry: {e}") from e

        REGISTRY_REQUESTS.labels(str(response.status_code), method).inc()
        return response

    def _checked(self, method: str, url: str, **kwargs) -> requests.Response:
        response = self._request(method, url, **kwargs)
        if response.status_code > 299:
            REGISTRY_ERRORS.labels("error_registry").inc()
            raise RegistryUnavailable(f"Registry returned: {response.text} ({response.status_code})")
        return response

    def _json(self, response: requests.Response):
        try:
            return response.json()
        except ValueError as e:
            REGISTRY_ERRORS.labels("unmarshal_body").inc()
            raise RegistryUnavailable(f"Could not unmarshal body: {e}") from e

    def get_scoped_resource(self, alias: str, resource_type: str, environment: str, application: str,
                            zone: str) -> dict:
        response = self._request("GET", f"{self.base_url}/api/v2/scopedresource", params={
            "alias": alias,
            "type": resource_type,
            "environment": environment,
            "application": application,
            "zone": zone,
        })
        if response.status_code == 404:
            REGISTRY_ERRORS.labels("not_found").inc()
            raise DependencyNotFound(alias, resource_type)
        if response.status_code > 299:
            REGISTRY_ERRORS.labels("error_registry").inc()
            raise RegistryUnavailable(f"Error contacting registry ({response.status_code})", alias, resource_type)
        return self._json(response)

    def get_secret(self, ref: str) -> str:
        response = self._request("GET", ref)
        if response.status_code > 299:
            REGISTRY_ERRORS.labels("resolve_secret").inc()
            raise RegistryUnavailable(f"Registry gave error message when resolving secret ({response.status_code})")
        return response.text

    def get_file(self, ref: str) -> bytes:
        response = self._request("GET", ref)
        if response.status_code > 299:
            REGISTRY_ERRORS.labels("resolve_file").inc()
            raise RegistryUnavailable(f"Registry gave error message when downloading file ({response.status_code})")
        return response.content

    def get_load_balancer_config(self, application: str, environment: str) -> List[dict]:
        response = self._checked("GET", f"{self.base_url}/api/v2/resources", params={
            "environment": environment,
            "application": application,
            "type": "LoadBalancerConfig",
        })
        configs = self._json(response)
        if not isinstance(configs, list):
            raise RegistryUnavailable(f"Error parsing load balancer config: {response.text}")
        return configs

    def create_resource(self, payload: dict) -> int:
        response = self._checked("POST", f"{self.base_url}/api/v2/resources/", json=payload)
        location = response.headers.get("Location", "")
        try:
            return int(location.rstrip("/").split("/")[-1])
        except ValueError as e:
            raise RegistryUnavailable(f"Didn't receive a valid resource ID from registry: {location!r}") from e

    def update_resource(self, resource_id: int, payload: dict) -> int:
        self._checked("PUT", f"{self.base_url}/api/v2/resources/{resource_id}", json=payload)
        return resource_id

    def get_environment(self, name: str):
        response = self._request("GET", f"{self.base_url}/api/v2/environments/{name}")
        if response.status_code != 200:
            raise RegistryUnavailable(f"Could not find environment {name} in registry")

    def get_application(self, name: str):
        response = self._request("GET", f"{self.base_url}/api/v2/applications/{name}")
        if response.status_code != 200:
            raise RegistryUnavailable(f"Could not find application {name} in registry")

    def register_application_instance(self, application: str, environment: str, version: str,
                                      exposed_ids: List[int], used_ids: List[int]):
        payload = {"application": application, "environment": environment, "version": version}
        if exposed_ids:
            payload["exposedResources"] = exposed_ids
        if used_ids:
            payload["usedResources"] = used_ids
        logging.info(f"registering {application}:{version} in {environment}, exposed: {exposed_ids}, "
                     f"used: {used_ids}")
        self._checked("POST", f"{self.base_url}/api/v2/applicationinstances/", json=payload)


def build_resource_payload(resource, environment: str, zone: str, hostname: str) -> Optional[dict]:
    scope = {"environment": environment}
    if not resource.all_zones:
        scope["zone"] = zone

    resource_type = resource.resource_type.lower()
    if resource_type == "restservice":
        return {
            "type": "RestService",
            "alias": resource.alias,
            "properties": {
                "url": f"https://{hostname}{resource.path}",
                "description": resource.description,
            },
            "scope": scope,
        }
    if resource_type == "webserviceendpoint":
        return {
            "type": "WebserviceEndpoint",
            "alias": resource.alias,
            "properties": {
                "endpointUrl": f"https://{hostname}{resource.path}",
                "wsdlUrl": "http://maven.adeo.no/nexus/service/local/artifact/maven/redirect"
                           f"?r=m2internal&g={resource.wsdl_group_id}&a={resource.wsdl_artifact_id}"
                           f"&v={resource.wsdl_version}&e=zip",
                "securityToken": resource.security_token,
                "description": resource.description,
            },
            "scope": scope,
        }
    return None
