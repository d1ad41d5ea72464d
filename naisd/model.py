import re
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

DNS_1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
SHORT_ENVIRONMENT = re.compile(r"^[utqp][0-9]*$")

VALID_ZONES = ("fss", "sbs", "iapp")
SYSTEM_NAMESPACES = ("kube-system", "kube-public", "istio-system", "nais")

ZONE_SBS = "sbs"

TYPE_APPLICATION_PROPERTIES = "applicationproperties"
TYPE_CERTIFICATE = "certificate"
TYPE_LOAD_BALANCER_CONFIG = "LoadBalancerConfig"


class DeploymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    application: str = ""
    version: str = ""
    environment: str = ""
    zone: str = ""
    namespace: str = ""
    manifest_url: str = Field("", alias="manifestUrl")
    registry_username: str = Field("", alias="registryUsername")
    registry_password: str = Field("", alias="registryPassword", repr=False)
    skip_registry: bool = Field(False, alias="skipRegistry")

    def validate_fields(self) -> List[str]:
        errors = []
        required = {
            "application": self.application,
            "version": self.version,
            "zone": self.zone,
            "namespace": self.namespace,
        }
        if not self.skip_registry:
            required.update({
                "environment": self.environment,
                "registryUsername": self.registry_username,
                "registryPassword": self.registry_password,
            })

        for field, value in required.items():
            if not value:
                errors.append(f"{field} is required and is empty")

        if not DNS_1123_LABEL.match(self.application):
            errors.append(
                "invalid application name: a DNS-1123 label must consist of lower case alphanumeric characters "
                "or '-', and must start and end with an alphanumeric character (e.g. 'my-name', or '123-abc', "
                "regex used for validation is '[a-z0-9]([-a-z0-9]*[a-z0-9])?')")

        if self.zone not in VALID_ZONES:
            errors.append("zone can only be fss, sbs or iapp")

        if self.namespace in SYSTEM_NAMESPACES:
            errors.append("deploying to system namespaces disallowed")

        return errors

    def registry_environment(self, cluster_name: str) -> str:
        if self.environment:
            return self.environment
        if self.namespace == "default":
            return cluster_name
        if SHORT_ENVIRONMENT.match(self.namespace):
            return self.namespace
        return f"{self.namespace}-{cluster_name}"


class Scope(BaseModel):
    environment: str = ""
    zone: str = ""


class NaisResource(BaseModel):
    """A used resource as resolved from the registry for one deploy.

    Which fields may be populated depends on the resource type:

    ======================  ==========================================
    LoadBalancerConfig      ingresses
    certificate             properties, secrets, certificates
    applicationproperties   properties
    anything else           properties, secrets
    ======================  ==========================================
    """
    model_config = ConfigDict(frozen=True)

    id: int = 0
    name: str = ""
    resource_type: str = ""
    scope: Scope = Field(default_factory=Scope)
    properties: Dict[str, str] = Field(default_factory=dict)
    property_map: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict, repr=False)
    certificates: Dict[str, bytes] = Field(default_factory=dict, repr=False)
    ingresses: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_populated_fields(self):
        if self.resource_type == TYPE_LOAD_BALANCER_CONFIG:
            if self.properties or self.secrets or self.certificates:
                raise ValueError("LoadBalancerConfig resources only carry ingresses")
            return self
        if self.ingresses:
            raise ValueError(f"resource {self.name} of type {self.resource_type} cannot carry ingresses")
        if self.certificates and self.resource_type != TYPE_CERTIFICATE:
            raise ValueError(f"resource {self.name} of type {self.resource_type} cannot carry certificates")
        if self.secrets and self.resource_type == TYPE_APPLICATION_PROPERTIES:
            raise ValueError(f"resource {self.name} of type {self.resource_type} cannot carry secrets")
        return self

    @property
    def has_secret_material(self) -> bool:
        return bool(self.secrets or self.certificates)


class ResourceKind(str, Enum):
    NAMESPACE = "namespace"
    SERVICE_ACCOUNT = "serviceaccount"
    ROLE_BINDING = "rolebinding"
    SECRET = "secret"
    DEPLOYMENT = "deployment"
    SERVICE = "service"
    INGRESS = "ingress"
    AUTOSCALER = "autoscaler"
    CONFIG_MAP = "configmap"


class AppliedResource(BaseModel):
    kind: ResourceKind
    name: str
    namespace: Optional[str] = None
    action: str
    resource_version: Optional[str] = None

    def describe(self) -> str:
        if self.kind == ResourceKind.CONFIG_MAP:
            return f"{self.action} alerts configmap ({self.name})"
        return f"{self.action} {self.kind.value}"


class DeploymentResult(BaseModel):
    applied: List[AppliedResource] = Field(default_factory=list)

    def get(self, kind: ResourceKind) -> Optional[AppliedResource]:
        for resource in self.applied:
            if resource.kind == kind:
                return resource
        return None

    def lines(self) -> List[str]:
        return [resource.describe() for resource in self.applied]
