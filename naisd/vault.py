from kubernetes import client

from naisd.config import VaultSettings

MOUNT_PATH = "/var/run/secrets/nais.io/vault"
VOLUME_NAME = "vault-secrets"


def volume_and_mount():
    volume = client.V1Volume(
        name=VOLUME_NAME,
        empty_dir=client.V1EmptyDirVolumeSource(medium="Memory"),
    )
    mount = client.V1VolumeMount(name=VOLUME_NAME, mount_path=MOUNT_PATH)
    return volume, mount


class VaultInitializer:
    def __init__(self, application: str, namespace: str, settings: VaultSettings, sidecar: bool = False):
        self.application = application
        self.namespace = namespace
        self.settings = settings
        self.sidecar = sidecar

    @property
    def kv_path(self) -> str:
        return f"{self.settings.kv_path}/{self.application}/{self.namespace}"

    def add_vault_containers(self, pod_spec: client.V1PodSpec) -> client.V1PodSpec:
        volume, mount = volume_and_mount()
        pod_spec.volumes = (pod_spec.volumes or []) + [volume]

        # Only the main container gets the secrets mounted
        for container in pod_spec.containers:
            if container.name == self.application:
                container.volume_mounts = (container.volume_mounts or []) + [mount]

        pod_spec.init_containers = (pod_spec.init_containers or []) + [self.vault_container(mount, False)]
        if self.sidecar:
            pod_spec.containers = pod_spec.containers + [self.vault_container(mount, True)]
        return pod_spec

    def vault_container(self, mount: client.V1VolumeMount, sidecar: bool) -> client.V1Container:
        return client.V1Container(
            name="vks-sidecar" if sidecar else "vks-init",
            image=self.settings.init_container_image,
            volume_mounts=[mount],
            env=[
                client.V1EnvVar(name="VKS_VAULT_ADDR", value=self.settings.addr),
                client.V1EnvVar(name="VKS_AUTH_PATH", value=self.settings.auth_path),
                client.V1EnvVar(name="VKS_KV_PATH", value=self.kv_path),
                client.V1EnvVar(name="VKS_VAULT_ROLE", value=self.application),
                client.V1EnvVar(name="VKS_SECRET_DEST_PATH", value=MOUNT_PATH),
                client.V1EnvVar(name="VKS_IS_SIDECAR", value=str(sidecar).lower()),
            ],
        )
