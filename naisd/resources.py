import base64
from typing import Dict, List, Optional

import yaml
from kubernetes import client

from naisd.config import Settings
from naisd.envvars import CERTIFICATE_MOUNT_PATH, ELECTOR_PATH, create_environment_variables
from naisd.errors import NameCollision
from naisd.manifest import Manifest, Probe
from naisd.model import ZONE_SBS, DeploymentRequest, NaisResource
from naisd.naming import sanitize_dns_label, secret_key_name
from naisd.vault import VaultInitializer

DEFAULT_PORT_NAME = "http"
DEFAULT_SERVICE_PORT = 80
ALERTS_CONFIG_MAP = "app-rules"


def object_meta(name: str, namespace: str, team: str = "") -> client.V1ObjectMeta:
    labels = {"app": name}
    if team:
        labels["team"] = team
    return client.V1ObjectMeta(name=name, namespace=namespace, labels=labels)


def _keep_resource_version(desired, current):
    if current is not None:
        desired.metadata.resource_version = current.metadata.resource_version
    return desired


def _probe(probe: Probe) -> client.V1Probe:
    return client.V1Probe(
        http_get=client.V1HTTPGetAction(path=probe.path, port=DEFAULT_PORT_NAME),
        initial_delay_seconds=probe.initial_delay,
        period_seconds=probe.period_seconds,
        failure_threshold=probe.failure_threshold,
        timeout_seconds=probe.timeout,
    )


def _lifecycle(manifest: Manifest) -> client.V1Lifecycle:
    if not manifest.pre_stop_hook_path:
        return client.V1Lifecycle()
    return client.V1Lifecycle(
        pre_stop=client.V1LifecycleHandler(
            http_get=client.V1HTTPGetAction(path=manifest.pre_stop_hook_path, port=DEFAULT_PORT_NAME)
        )
    )


def certificate_keys(resources: List[NaisResource]) -> List[str]:
    keys = []
    for resource in resources:
        for key in sorted(resource.certificates):
            keys.append(secret_key_name(resource.name, key))
    return keys


def create_certificate_volume(application: str, resources: List[NaisResource]) -> Optional[client.V1Volume]:
    keys = certificate_keys(resources)
    if not keys:
        return None
    return client.V1Volume(
        name=sanitize_dns_label(application),
        secret=client.V1SecretVolumeSource(
            secret_name=application,
            items=[client.V1KeyToPath(key=key, path=key) for key in keys],
        ),
    )


def create_certificate_volume_mount(application: str, resources: List[NaisResource]) -> Optional[client.V1VolumeMount]:
    if not certificate_keys(resources):
        return None
    return client.V1VolumeMount(name=sanitize_dns_label(application), mount_path=CERTIFICATE_MOUNT_PATH,
                                read_only=True)


def _main_container(request: DeploymentRequest, manifest: Manifest, resources: List[NaisResource],
                    environment: str) -> client.V1Container:
    mount = create_certificate_volume_mount(request.application, resources)
    return client.V1Container(
        name=request.application,
        image=f"{manifest.image}:{request.version}",
        image_pull_policy="IfNotPresent",
        ports=[client.V1ContainerPort(name=DEFAULT_PORT_NAME, container_port=manifest.port, protocol="TCP")],
        resources=client.V1ResourceRequirements(
            requests={"cpu": manifest.resources.requests.cpu, "memory": manifest.resources.requests.memory},
            limits={"cpu": manifest.resources.limits.cpu, "memory": manifest.resources.limits.memory},
        ),
        liveness_probe=_probe(manifest.healthcheck.liveness),
        readiness_probe=_probe(manifest.healthcheck.readiness),
        lifecycle=_lifecycle(manifest),
        env=create_environment_variables(request, manifest, resources, environment),
        volume_mounts=[mount] if mount else None,
    )


def _leader_election_container(request: DeploymentRequest, settings: Settings) -> client.V1Container:
    return client.V1Container(
        name="elector",
        image=settings.leader_election_image,
        args=[f"--election={request.application}", f"--http={ELECTOR_PATH}",
              f"--election-namespace={request.namespace}"],
        ports=[client.V1ContainerPort(container_port=4040, protocol="TCP")],
        resources=client.V1ResourceRequirements(requests={"cpu": "100m"}),
    )


def _redis_exporter_container(settings: Settings) -> client.V1Container:
    return client.V1Container(
        name="redis-exporter",
        image=settings.redis_exporter_image,
        env=[client.V1EnvVar(name="REDIS_ADDR", value="localhost:6379")],
        ports=[client.V1ContainerPort(name="metrics", container_port=9121, protocol="TCP")],
        resources=client.V1ResourceRequirements(
            requests={"cpu": "100m", "memory": "100Mi"},
            limits={"cpu": "100m", "memory": "100Mi"},
        ),
    )


def pod_annotations(manifest: Manifest) -> Dict[str, str]:
    annotations = {
        "prometheus.io/scrape": str(manifest.prometheus.enabled).lower(),
        "prometheus.io/path": manifest.prometheus.path,
        "prometheus.io/port": DEFAULT_PORT_NAME,
    }
    if manifest.istio.enabled:
        annotations["sidecar.istio.io/inject"] = "true"
    return annotations


def build_pod_spec(request: DeploymentRequest, manifest: Manifest, resources: List[NaisResource], environment: str,
                   settings: Settings) -> client.V1PodSpec:
    containers = [_main_container(request, manifest, resources, environment)]
    if manifest.leader_election:
        containers.append(_leader_election_container(request, settings))
    if manifest.redis:
        containers.append(_redis_exporter_container(settings))

    volume = create_certificate_volume(request.application, resources)
    pod_spec = client.V1PodSpec(
        containers=containers,
        service_account_name=request.application,
        restart_policy="Always",
        dns_policy="ClusterFirst",
        volumes=[volume] if volume else None,
    )

    if settings.vault.enabled and manifest.vault.enabled:
        initializer = VaultInitializer(request.application, request.namespace, settings.vault,
                                       sidecar=manifest.vault.sidecar)
        pod_spec = initializer.add_vault_containers(pod_spec)

    return pod_spec


def build_deployment(current: Optional[client.V1Deployment], request: DeploymentRequest, manifest: Manifest,
                     resources: List[NaisResource], environment: str, settings: Settings) -> client.V1Deployment:
    app = request.application

    # The autoscaler owns the replica count once the deployment exists
    replicas = manifest.replicas.min
    if current is not None and current.spec is not None and current.spec.replicas:
        replicas = current.spec.replicas

    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(name=app, labels={"app": app}, annotations=pod_annotations(manifest)),
        spec=build_pod_spec(request, manifest, resources, environment, settings),
    )

    deployment = client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=object_meta(app, request.namespace, manifest.team),
        spec=client.V1DeploymentSpec(
            replicas=replicas,
            selector=client.V1LabelSelector(match_labels={"app": app}),
            template=template,
            strategy=client.V1DeploymentStrategy(
                type="RollingUpdate",
                rolling_update=client.V1RollingUpdateDeployment(max_surge="25%", max_unavailable=0),
            ),
            progress_deadline_seconds=300,
            revision_history_limit=10,
        ),
    )
    return _keep_resource_version(deployment, current)


def needs_secret(resources: List[NaisResource]) -> bool:
    return any(resource.has_secret_material for resource in resources)


def secret_data(resources: List[NaisResource]) -> Dict[str, bytes]:
    data: Dict[str, bytes] = {}
    sources: Dict[str, str] = {}

    def add(key: str, value: bytes, source: str):
        if key in sources:
            raise NameCollision(key, sources[key], source)
        sources[key] = source
        data[key] = value

    for resource in resources:
        source = f"{resource.name} ({resource.resource_type})"
        for key in sorted(resource.secrets):
            add(secret_key_name(resource.name, key), resource.secrets[key].encode("utf-8"), source)
        for key in sorted(resource.certificates):
            add(secret_key_name(resource.name, key), resource.certificates[key], source)
    return data


def build_secret(current: Optional[client.V1Secret], request: DeploymentRequest, manifest: Manifest,
                 resources: List[NaisResource]) -> client.V1Secret:
    encoded = {key: base64.b64encode(value).decode("ascii") for key, value in secret_data(resources).items()}
    secret = client.V1Secret(
        api_version="v1",
        kind="Secret",
        type="Opaque",
        metadata=object_meta(request.application, request.namespace, manifest.team),
        data=encoded,
    )
    return _keep_resource_version(secret, current)


def build_service(current: Optional[client.V1Service], request: DeploymentRequest,
                  manifest: Manifest) -> client.V1Service:
    app = request.application
    service = client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=object_meta(app, request.namespace, manifest.team),
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            selector={"app": app},
            ports=[client.V1ServicePort(name=DEFAULT_PORT_NAME, protocol="TCP", port=DEFAULT_SERVICE_PORT,
                                        target_port=DEFAULT_PORT_NAME)],
        ),
    )
    if current is not None and current.spec is not None:
        service.spec.cluster_ip = current.spec.cluster_ip
    return _keep_resource_version(service, current)


def ingress_host(application: str, namespace: str, subdomain: str) -> str:
    if namespace == "default":
        return f"{application}.{subdomain}"
    return f"{application}-{namespace}.{subdomain}"


def _ingress_rule(host: str, path: str, service: str) -> client.V1IngressRule:
    return client.V1IngressRule(
        host=host,
        http=client.V1HTTPIngressRuleValue(paths=[
            client.V1HTTPIngressPath(
                path=path,
                path_type="Prefix",
                backend=client.V1IngressBackend(
                    service=client.V1IngressServiceBackend(
                        name=service,
                        port=client.V1ServiceBackendPort(number=DEFAULT_SERVICE_PORT),
                    )
                ),
            )
        ]),
    )


def build_ingress(current: Optional[client.V1Ingress], request: DeploymentRequest, manifest: Manifest,
                  resources: List[NaisResource], environment: str, settings: Settings) -> client.V1Ingress:
    app = request.application
    rules = [_ingress_rule(ingress_host(app, request.namespace, settings.cluster_subdomain), "/", app)]

    if request.zone == ZONE_SBS:
        rules.append(_ingress_rule(f"{app}-{environment}.{settings.sbs_public_domain}", "/", app))

    for resource in resources:
        for host in sorted(resource.ingresses):
            rules.append(_ingress_rule(host, "/" + resource.ingresses[host].lstrip("/"), app))

    ingress = client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=object_meta(app, request.namespace, manifest.team),
        spec=client.V1IngressSpec(rules=rules),
    )
    return _keep_resource_version(ingress, current)


def build_autoscaler(current: Optional[client.V1HorizontalPodAutoscaler], request: DeploymentRequest,
                     manifest: Manifest) -> client.V1HorizontalPodAutoscaler:
    app = request.application
    autoscaler = client.V1HorizontalPodAutoscaler(
        api_version="autoscaling/v1",
        kind="HorizontalPodAutoscaler",
        metadata=object_meta(app, request.namespace, manifest.team),
        spec=client.V1HorizontalPodAutoscalerSpec(
            min_replicas=manifest.replicas.min,
            max_replicas=manifest.replicas.max,
            target_cpu_utilization_percentage=manifest.replicas.cpu_threshold_percentage,
            scale_target_ref=client.V1CrossVersionObjectReference(api_version="apps/v1", kind="Deployment",
                                                                  name=app),
        ),
    )
    return _keep_resource_version(autoscaler, current)


def build_service_account(current: Optional[client.V1ServiceAccount], request: DeploymentRequest,
                          manifest: Manifest) -> client.V1ServiceAccount:
    account = client.V1ServiceAccount(
        api_version="v1",
        kind="ServiceAccount",
        metadata=object_meta(request.application, request.namespace, manifest.team),
    )
    if current is not None:
        # Token secrets are managed by the cluster
        account.secrets = current.secrets
        account.image_pull_secrets = current.image_pull_secrets
    return _keep_resource_version(account, current)


def build_role_binding(current: Optional[client.V1RoleBinding], request: DeploymentRequest, manifest: Manifest,
                       settings: Settings) -> client.V1RoleBinding:
    binding = client.V1RoleBinding(
        api_version="rbac.authorization.k8s.io/v1",
        kind="RoleBinding",
        metadata=object_meta(request.application, request.namespace, manifest.team),
        subjects=[client.RbacV1Subject(kind="ServiceAccount", name=request.application,
                                       namespace=request.namespace)],
        role_ref=client.V1RoleRef(api_group="rbac.authorization.k8s.io", kind="ClusterRole",
                                  name=settings.app_cluster_role),
    )
    return _keep_resource_version(binding, current)


def build_namespace(name: str, team: str) -> client.V1Namespace:
    labels = {"team": team} if team else None
    return client.V1Namespace(api_version="v1", kind="Namespace",
                              metadata=client.V1ObjectMeta(name=name, labels=labels))


def alert_rules_key(request: DeploymentRequest) -> str:
    return f"{request.namespace}-{request.application}.yml"


def alert_rules_document(request: DeploymentRequest, manifest: Manifest) -> str:
    rules = []
    for rule in manifest.alerts:
        rules.append({
            "alert": rule.alert,
            "expr": rule.expr,
            "for": rule.for_,
            "labels": dict(rule.labels),
            "annotations": dict(rule.annotations),
        })
    group = {"name": f"{request.namespace}-{request.application}", "rules": rules}
    return yaml.safe_dump({"groups": [group]}, default_flow_style=False, sort_keys=False)


def build_alerts_config_map(current: Optional[client.V1ConfigMap], request: DeploymentRequest, manifest: Manifest,
                            settings: Settings) -> client.V1ConfigMap:
    # Shared by every application; only this application's key is replaced
    data = dict(current.data or {}) if current is not None else {}
    data[alert_rules_key(request)] = alert_rules_document(request, manifest)

    config_map = client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=client.V1ObjectMeta(name=ALERTS_CONFIG_MAP, namespace=settings.alerts_namespace),
        data=data,
    )
    return _keep_resource_version(config_map, current)
