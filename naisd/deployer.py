import logging
from typing import Callable, List

from naisd.config import Settings
from naisd.errors import DeployError, ReconcileError, ValidationError
from naisd.manifest import Manifest, ManifestSource
from naisd.metrics import DEPLOYMENTS
from naisd.model import DeploymentRequest, DeploymentResult, NaisResource
from naisd.reconciler import Reconciler
from naisd.registry import RegistryClient
from naisd.resolver import DependencyResolver
from naisd.resources import ingress_host


def exposed_hostname(request: DeploymentRequest, manifest: Manifest, resources: List[NaisResource],
                     settings: Settings) -> str:
    if not manifest.ingress.disabled:
        return ingress_host(request.application, request.namespace, settings.cluster_subdomain)
    for resource in resources:
        for host in sorted(resource.ingresses):
            return host
    return ""


class Deployer:

    def __init__(self, settings: Settings, cluster, manifest_source: ManifestSource,
                 registry_factory: Callable[[DeploymentRequest], RegistryClient]):
        self.settings = settings
        self.cluster = cluster
        self.manifest_source = manifest_source
        self.registry_factory = registry_factory

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        try:
            result = self._deploy(request)
        except DeployError:
            DEPLOYMENTS.labels("failure").inc()
            raise
        DEPLOYMENTS.labels("success").inc()
        return result

    def _deploy(self, request: DeploymentRequest) -> DeploymentResult:
        errors = request.validate_fields()
        if errors:
            raise ValidationError([(error, {}) for error in errors])

        logging.info(f"deploying {request.application}:{request.version} to {request.namespace}")
        manifest = self.manifest_source.load(request)
        environment = request.registry_environment(self.settings.cluster_name)

        if request.skip_registry:
            logging.info(f"skipping registry for {request.application}")
            result = Reconciler(self.cluster, self.settings).reconcile(request, manifest, [], environment)
        else:
            registry = self.registry_factory(request)
            try:
                result = self._deploy_with_registry(request, manifest, environment, registry)
            finally:
                registry.close()

        logging.info(f"deployed {request.application}:{request.version}: {result.lines()}")
        return result

    def _deploy_with_registry(self, request: DeploymentRequest, manifest: Manifest, environment: str,
                              registry: RegistryClient) -> DeploymentResult:
        registry.get_environment(environment)
        registry.get_application(request.application)
        resolver = DependencyResolver(registry)
        resources: List[NaisResource] = resolver.resolve(manifest, request, environment)

        result = Reconciler(self.cluster, self.settings).reconcile(request, manifest, resources, environment)

        hostname = exposed_hostname(request, manifest, resources, self.settings)
        try:
            resolver.sync_registry(manifest, request, resources, hostname, environment)
        except DeployError as e:
            raise ReconcileError(e, result) from e
        return result
