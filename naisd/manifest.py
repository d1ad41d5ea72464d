import copy
import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

import pydantic
import requests
import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from naisd.config import Settings
from naisd.errors import TransportError, ValidationError
from naisd.httpclient import new_session
from naisd.model import DeploymentRequest

MEMORY_NOTATION = re.compile(r"^\d+([EPTGMK]i?)?$")
CPU_NOTATION = re.compile(r"^\d+(\.\d+)?m?$")
DURATION_NOTATION = re.compile(r"^\d+[smhdwy]$")

DEFAULT_IMAGE_REPOSITORY = "docker.io/nais"


class _ManifestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Probe(_ManifestModel):
    path: str = ""
    initial_delay: int = Field(0, alias="initialDelay")
    period_seconds: int = Field(0, alias="periodSeconds")
    failure_threshold: int = Field(0, alias="failureThreshold")
    timeout: int = 0


class Healthcheck(_ManifestModel):
    liveness: Probe = Field(default_factory=Probe)
    readiness: Probe = Field(default_factory=Probe)


class ResourceList(_ManifestModel):
    cpu: str = ""
    memory: str = ""


class ResourceRequirements(_ManifestModel):
    limits: ResourceList = Field(default_factory=ResourceList)
    requests: ResourceList = Field(default_factory=ResourceList)


class PrometheusConfig(_ManifestModel):
    enabled: bool = False
    path: str = ""


class IstioConfig(_ManifestModel):
    enabled: bool = False


class IngressConfig(_ManifestModel):
    disabled: bool = False


class VaultConfig(_ManifestModel):
    enabled: bool = False
    sidecar: bool = False


class Replicas(_ManifestModel):
    min: int = 0
    max: int = 0
    cpu_threshold_percentage: int = Field(0, alias="cpuThresholdPercentage")


class UsedResource(_ManifestModel):
    alias: str = ""
    resource_type: str = Field("", alias="resourceType")
    property_map: Dict[str, str] = Field(default_factory=dict, alias="propertyMap")


class ExposedResource(_ManifestModel):
    alias: str = ""
    resource_type: str = Field("", alias="resourceType")
    path: str = ""
    description: str = ""
    wsdl_group_id: str = Field("", alias="wsdlGroupId")
    wsdl_artifact_id: str = Field("", alias="wsdlArtifactId")
    wsdl_version: str = Field("", alias="wsdlVersion")
    security_token: str = Field("", alias="securityToken")
    all_zones: bool = Field(False, alias="allZones")


class RegistryResources(_ManifestModel):
    used: List[UsedResource] = Field(default_factory=list)
    exposed: List[ExposedResource] = Field(default_factory=list)


class AlertRule(_ManifestModel):
    alert: str = ""
    expr: str = ""
    for_: str = Field("", alias="for")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class Manifest(_ManifestModel):
    team: str = ""
    image: str = ""
    port: int = 0
    healthcheck: Healthcheck = Field(default_factory=Healthcheck)
    pre_stop_hook_path: str = Field("", alias="preStopHookPath")
    prometheus: PrometheusConfig = Field(default_factory=PrometheusConfig)
    istio: IstioConfig = Field(default_factory=IstioConfig)
    replicas: Replicas = Field(default_factory=Replicas)
    ingress: IngressConfig = Field(default_factory=IngressConfig)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    registry_resources: RegistryResources = Field(
        default_factory=RegistryResources, validation_alias=AliasChoices("fasitResources", "registryResources"))
    leader_election: bool = Field(False, alias="leaderElection")
    redis: bool = False
    vault: VaultConfig = Field(default_factory=VaultConfig)
    alerts: List[AlertRule] = Field(default_factory=list)


def default_manifest(application: str) -> dict:
    return {
        "image": f"{DEFAULT_IMAGE_REPOSITORY}/{application}",
        "port": 8080,
        "healthcheck": {
            "liveness": {"path": "isAlive", "initialDelay": 20, "periodSeconds": 10, "failureThreshold": 3,
                         "timeout": 1},
            "readiness": {"path": "isReady", "initialDelay": 20, "periodSeconds": 10, "failureThreshold": 3,
                          "timeout": 1},
        },
        "prometheus": {"enabled": False, "path": "/metrics"},
        "replicas": {"min": 2, "max": 4, "cpuThresholdPercentage": 50},
        "resources": {
            "limits": {"cpu": "500m", "memory": "512Mi"},
            "requests": {"cpu": "200m", "memory": "256Mi"},
        },
    }


def merge_manifest(document: dict, defaults: dict) -> dict:
    """Fill keys missing from document with values from defaults.

    Nested mappings are merged key by key; any other value present in the
    document, lists included, wins whole.
    """
    merged = copy.deepcopy(defaults)
    for key, value in (document or {}).items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_manifest(value, merged[key])
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_manifest(document: dict) -> Manifest:
    try:
        return Manifest.model_validate(document)
    except pydantic.ValidationError as e:
        issues = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            issues.append((error["msg"], {field: str(error.get("input", ""))}))
        raise ValidationError(issues) from e


def _validate_image(manifest: Manifest):
    if manifest.image.rfind(":") > manifest.image.rfind("/"):
        return "Image cannot contain tag", {"Image": manifest.image}


def _validate_replicas_max(manifest: Manifest):
    if manifest.replicas.max == 0:
        return "Replicas.Max is not set", {"Replicas.Max": str(manifest.replicas.max)}


def _validate_replicas_min(manifest: Manifest):
    if manifest.replicas.min == 0:
        return "Replicas.Min is not set", {"Replicas.Min": str(manifest.replicas.min)}


def _validate_min_is_smaller_than_max(manifest: Manifest):
    if manifest.replicas.min > manifest.replicas.max:
        return "Replicas.Min is larger than Replicas.Max.", {
            "Replicas.Max": str(manifest.replicas.max),
            "Replicas.Min": str(manifest.replicas.min),
        }


def _validate_cpu_threshold(manifest: Manifest):
    threshold = manifest.replicas.cpu_threshold_percentage
    if threshold < 10 or threshold > 90:
        return "CpuThreshold must be between 10 and 90.", {"Replicas.CpuThreshold": str(threshold)}


def _notation(pattern, message: str, key: str, value: str):
    if not pattern.match(value):
        return message, {key: value}


def _validate_memory(manifest: Manifest):
    message = "Not a valid memory value. Are you using correct notation?"
    return (_notation(MEMORY_NOTATION, message, "Resources.Requests.Memory", manifest.resources.requests.memory)
            or _notation(MEMORY_NOTATION, message, "Resources.Limits.Memory", manifest.resources.limits.memory))


def _validate_cpu(manifest: Manifest):
    message = "Not a valid cpu value. Are you using correct notation?"
    return (_notation(CPU_NOTATION, message, "Resources.Requests.Cpu", manifest.resources.requests.cpu)
            or _notation(CPU_NOTATION, message, "Resources.Limits.Cpu", manifest.resources.limits.cpu))


def _validate_resources(manifest: Manifest):
    declared = list(manifest.registry_resources.exposed) + list(manifest.registry_resources.used)
    for resource in declared:
        if not resource.alias or not resource.resource_type:
            return "Alias and ResourceType must be specified", {"Alias": resource.alias}


def _validate_alert_rules(manifest: Manifest):
    for rule in manifest.alerts:
        if not rule.alert or not rule.expr or not rule.for_:
            return "Alert must specify alert, expr and for", {"Alert": rule.alert}
        if not DURATION_NOTATION.match(rule.for_):
            return "Alert.For is not a valid duration", {"Alert": rule.alert, "For": rule.for_}
        if "action" not in rule.annotations:
            return "An action annotation must be specified", {"Alert": rule.alert}


VALIDATIONS = [
    _validate_image,
    _validate_replicas_max,
    _validate_replicas_min,
    _validate_min_is_smaller_than_max,
    _validate_cpu_threshold,
    _validate_memory,
    _validate_cpu,
    _validate_resources,
    _validate_alert_rules,
]


def validate_manifest(manifest: Manifest) -> List[Tuple[str, Dict[str, str]]]:
    issues = []
    for validation in VALIDATIONS:
        issue = validation(manifest)
        if issue is not None:
            issues.append(issue)
    return issues


class ManifestSource:
    def __init__(self, settings: Settings, session_factory: Callable[[Settings], requests.Session] = new_session):
        self.settings = settings
        self.session_factory = session_factory

    def fetch(self, session: requests.Session, url: str) -> dict:
        logging.info(f"Fetching manifest from URL {url}")
        try:
            response = session.get(url, timeout=self.settings.http_timeout)
        except requests.RequestException as e:
            logging.error(f"Could not fetch {url}: {e}")
            raise TransportError(f"HTTP GET failed for url: {url}. {e}") from e

        if response.status_code > 299:
            logging.error(f"got HTTP status code {response.status_code} fetching manifest from URL: {url}")
            raise TransportError(f"got HTTP status code {response.status_code} fetching manifest from URL: {url}")

        try:
            document = yaml.safe_load(response.text)
        except yaml.YAMLError as e:
            logging.error(f"Could not unmarshal yaml {e} from URL: {url}")
            raise TransportError(f"unable to unmarshal {e} from URL: {url}") from e

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise TransportError(f"manifest from URL: {url} is not a mapping")
        return document

    def urls(self, request: DeploymentRequest) -> List[str]:
        if request.manifest_url:
            return [request.manifest_url]
        logging.info("No manifest url specified. Using defaults")
        return [template.format(application=request.application, version=request.version)
                for template in self.settings.manifest_url_templates]

    def download(self, request: DeploymentRequest) -> dict:
        failures: List[str] = []
        session = self.session_factory(self.settings)
        try:
            for url in self.urls(request):
                try:
                    return self.fetch(session, url)
                except TransportError as e:
                    failures.append(str(e))
        finally:
            session.close()
        raise TransportError("; ".join(failures) or "no manifest url to fetch from")

    def load(self, request: DeploymentRequest, document: Optional[dict] = None) -> Manifest:
        if document is None:
            document = self.download(request)
        manifest = parse_manifest(merge_manifest(document, default_manifest(request.application)))

        issues = validate_manifest(manifest)
        if issues:
            error = ValidationError(issues)
            logging.error(f"Invalid manifest: {error}")
            raise error
        return manifest
