import logging
from typing import Callable, List, Optional

from naisd.config import Settings
from naisd.envvars import create_environment_variables
from naisd.errors import DeployError, ReconcileError
from naisd.manifest import Manifest
from naisd.model import AppliedResource, DeploymentRequest, DeploymentResult, NaisResource, ResourceKind
from naisd.resources import (ALERTS_CONFIG_MAP, build_alerts_config_map, build_autoscaler, build_deployment,
                             build_ingress, build_namespace, build_role_binding, build_secret, build_service,
                             build_service_account, needs_secret, secret_data)


class Step:
    def __init__(self, kind: ResourceKind, name: str, namespace: Optional[str], build: Callable):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.build = build


class Reconciler:
    def __init__(self, cluster, settings: Settings):
        self.cluster = cluster
        self.settings = settings

    def plan(self, request: DeploymentRequest, manifest: Manifest, resources: List[NaisResource],
             environment: str) -> List[Step]:
        app, namespace = request.application, request.namespace

        # Name collisions must fail before anything is written
        create_environment_variables(request, manifest, resources, environment)
        secret_data(resources)

        steps = [
            Step(ResourceKind.SERVICE_ACCOUNT, app, namespace,
                 lambda current: build_service_account(current, request, manifest)),
            Step(ResourceKind.ROLE_BINDING, app, namespace,
                 lambda current: build_role_binding(current, request, manifest, self.settings)),
        ]
        if needs_secret(resources):
            steps.append(Step(ResourceKind.SECRET, app, namespace,
                              lambda current: build_secret(current, request, manifest, resources)))
        else:
            logging.info(f"no secret material for {app}, skipping secret")

        steps += [
            Step(ResourceKind.DEPLOYMENT, app, namespace,
                 lambda current: build_deployment(current, request, manifest, resources, environment, self.settings)),
            Step(ResourceKind.SERVICE, app, namespace,
                 lambda current: build_service(current, request, manifest)),
        ]
        if not manifest.ingress.disabled:
            steps.append(Step(ResourceKind.INGRESS, app, namespace,
                              lambda current: build_ingress(current, request, manifest, resources, environment,
                                                            self.settings)))
        steps.append(Step(ResourceKind.AUTOSCALER, app, namespace,
                          lambda current: build_autoscaler(current, request, manifest)))
        if manifest.alerts:
            steps.append(Step(ResourceKind.CONFIG_MAP, ALERTS_CONFIG_MAP, self.settings.alerts_namespace,
                              lambda current: build_alerts_config_map(current, request, manifest, self.settings)))
        return steps

    def reconcile(self, request: DeploymentRequest, manifest: Manifest, resources: List[NaisResource],
                  environment: str = None) -> DeploymentResult:
        environment = environment or request.registry_environment(self.settings.cluster_name)
        result = DeploymentResult()
        try:
            steps = self.plan(request, manifest, resources, environment)
            self.ensure_namespace(request.namespace, manifest.team, result)
            for step in steps:
                result.applied.append(self.apply(step))
        except DeployError as e:
            logging.error(f"deploy of {request.application} stopped after {result.lines()}: {e}")
            raise ReconcileError(e, result) from e
        return result

    def ensure_namespace(self, namespace: str, team: str, result: DeploymentResult):
        if self.cluster.get(ResourceKind.NAMESPACE, namespace) is not None:
            return
        created = self.cluster.create(ResourceKind.NAMESPACE, build_namespace(namespace, team))
        result.applied.append(AppliedResource(kind=ResourceKind.NAMESPACE, name=namespace, action="created",
                                              resource_version=created.metadata.resource_version))

    def apply(self, step: Step) -> AppliedResource:
        # Desired state carries the resource version of this read
        current = self.cluster.get(step.kind, step.name, step.namespace)
        desired = step.build(current)
        if current is None:
            written, action = self.cluster.create(step.kind, desired), "created"
        else:
            written, action = self.cluster.update(step.kind, desired), "updated"
        return AppliedResource(kind=step.kind, name=step.name, namespace=step.namespace, action=action,
                               resource_version=written.metadata.resource_version)
