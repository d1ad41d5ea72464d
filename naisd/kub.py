import logging
from typing import Optional

import urllib3
from kubernetes import client, config
from kubernetes.client import ApiException

from naisd.config import Settings
from naisd.errors import ClusterApiError
from naisd.httpclient import retry_policy
from naisd.metrics import CLUSTER_WRITES
from naisd.model import ResourceKind

# kind -> (api, operation suffix, namespaced)
_OPERATIONS = {
    ResourceKind.NAMESPACE: ("core", "namespace", False),
    ResourceKind.SERVICE_ACCOUNT: ("core", "namespaced_service_account", True),
    ResourceKind.ROLE_BINDING: ("rbac", "namespaced_role_binding", True),
    ResourceKind.SECRET: ("core", "namespaced_secret", True),
    ResourceKind.DEPLOYMENT: ("apps", "namespaced_deployment", True),
    ResourceKind.SERVICE: ("core", "namespaced_service", True),
    ResourceKind.INGRESS: ("networking", "namespaced_ingress", True),
    ResourceKind.AUTOSCALER: ("autoscaling", "namespaced_horizontal_pod_autoscaler", True),
    ResourceKind.CONFIG_MAP: ("core", "namespaced_config_map", True),
}


class KubernetesClient:

    def __init__(self, api_client: client.ApiClient = None, timeout: float = None):
        self.timeout = timeout
        self.apis = {
            "core": client.CoreV1Api(api_client),
            "apps": client.AppsV1Api(api_client),
            "networking": client.NetworkingV1Api(api_client),
            "autoscaling": client.AutoscalingV1Api(api_client),
            "rbac": client.RbacAuthorizationV1Api(api_client),
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "KubernetesClient":
        configuration = client.Configuration()
        if settings.in_cluster:
            config.load_incluster_config(client_configuration=configuration)
        else:
            config.load_kube_config(client_configuration=configuration)
        configuration.retries = retry_policy(settings)
        return cls(client.ApiClient(configuration), settings.http_timeout)

    def _operation(self, verb: str, kind: ResourceKind):
        api, suffix, namespaced = _OPERATIONS[kind]
        return getattr(self.apis[api], f"{verb}_{suffix}"), namespaced

    def _call(self, action: str, kind: ResourceKind, name: str, namespace: Optional[str], operation, *args):
        try:
            return operation(*args, _request_timeout=self.timeout)
        except ApiException as e:
            logging.error(f"Exception when trying to {action} {kind.value} {name}: {e.status} {e.reason}")
            raise ClusterApiError(action, kind.value, name, namespace, e.status, e.reason) from e
        except urllib3.exceptions.HTTPError as e:
            logging.error(f"Could not reach the cluster to {action} {kind.value} {name}: {e}")
            raise ClusterApiError(action, kind.value, name, namespace, None, str(e)) from e

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None):
        read, namespaced = self._operation("read", kind)
        args = (name, namespace) if namespaced else (name,)
        try:
            return read(*args, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            logging.error(f"Exception when reading {kind.value} {name}: {e.status} {e.reason}")
            raise ClusterApiError("read", kind.value, name, namespace, e.status, e.reason) from e
        except urllib3.exceptions.HTTPError as e:
            raise ClusterApiError("read", kind.value, name, namespace, None, str(e)) from e

    def create(self, kind: ResourceKind, body):
        name, namespace = body.metadata.name, body.metadata.namespace
        create, namespaced = self._operation("create", kind)
        args = (namespace, body) if namespaced else (body,)
        created = self._call("create", kind, name, namespace, create, *args)
        CLUSTER_WRITES.labels(kind.value, "created").inc()
        logging.info(f"{kind.value} {name} created successfully.")
        return created

    def update(self, kind: ResourceKind, body):
        name, namespace = body.metadata.name, body.metadata.namespace
        replace, namespaced = self._operation("replace", kind)
        args = (name, namespace, body) if namespaced else (name, body)
        updated = self._call("update", kind, name, namespace, replace, *args)
        CLUSTER_WRITES.labels(kind.value, "updated").inc()
        logging.info(f"{kind.value} {name} updated successfully.")
        return updated
