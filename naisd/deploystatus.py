from enum import Enum
from typing import List, Optional, Tuple

from kubernetes import client
from pydantic import BaseModel

from naisd.model import ResourceKind


class DeployStatus(str, Enum):
    SUCCESS = "Success"
    IN_PROGRESS = "InProgress"
    FAILED = "Failed"

    @property
    def http_status(self) -> int:
        return {DeployStatus.SUCCESS: 200, DeployStatus.IN_PROGRESS: 202, DeployStatus.FAILED: 500}[self]


class DeploymentStatusView(BaseModel):
    name: str
    desired: int
    current: int
    up_to_date: int
    available: int
    containers: List[str]
    images: List[str]
    status: DeployStatus
    reason: str


def _view(status: DeployStatus, reason: str, deployment: client.V1Deployment) -> DeploymentStatusView:
    containers = deployment.spec.template.spec.containers or []
    current = deployment.status
    return DeploymentStatusView(
        name=deployment.metadata.name,
        desired=deployment.spec.replicas or 0,
        current=current.replicas or 0,
        up_to_date=current.updated_replicas or 0,
        available=current.available_replicas or 0,
        containers=[c.name for c in containers],
        images=[c.image for c in containers],
        status=status,
        reason=reason,
    )


def _exceeded_progress_deadline(status: client.V1DeploymentStatus) -> bool:
    for condition in status.conditions or []:
        if condition.type == "Progressing" and condition.reason == "ProgressDeadlineExceeded":
            return True
    return False


def deployment_status(deployment: client.V1Deployment) -> Tuple[DeployStatus, DeploymentStatusView]:
    status = deployment.status or client.V1DeploymentStatus()
    deployment.status = status
    desired = deployment.spec.replicas or 0
    updated = status.updated_replicas or 0
    replicas = status.replicas or 0
    available = status.available_replicas or 0

    if (deployment.metadata.generation or 0) > (status.observed_generation or 0):
        return DeployStatus.IN_PROGRESS, _view(DeployStatus.IN_PROGRESS,
                                               "Waiting for deployment spec update to be observed", deployment)

    if _exceeded_progress_deadline(status):
        reason = f"deployment {deployment.metadata.name} exceeded its progress deadline"
        return DeployStatus.FAILED, _view(DeployStatus.FAILED, reason, deployment)
    if updated < desired:
        reason = f"Waiting for rollout to finish: {updated} out of {desired} new replicas have been updated."
        return DeployStatus.IN_PROGRESS, _view(DeployStatus.IN_PROGRESS, reason, deployment)
    if replicas > updated:
        reason = f"Waiting for rollout to finish: {replicas - updated} old replicas are pending termination."
        return DeployStatus.IN_PROGRESS, _view(DeployStatus.IN_PROGRESS, reason, deployment)
    if available < updated:
        reason = f"Waiting for rollout to finish: {available} of {updated} updated replicas are available."
        return DeployStatus.IN_PROGRESS, _view(DeployStatus.IN_PROGRESS, reason, deployment)

    reason = f"deployment \"{deployment.metadata.name}\" successfully rolled out."
    return DeployStatus.SUCCESS, _view(DeployStatus.SUCCESS, reason, deployment)


class DeploymentStatusViewer:
    def __init__(self, cluster):
        self.cluster = cluster

    def status_view(self, namespace: str, name: str) -> Optional[Tuple[DeployStatus, DeploymentStatusView]]:
        deployment = self.cluster.get(ResourceKind.DEPLOYMENT, name, namespace)
        if deployment is None:
            return None
        return deployment_status(deployment)
