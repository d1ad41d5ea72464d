from typing import Annotated, List

import pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from naisd.errors import ConfigurationError

DEFAULT_MANIFEST_URL_TEMPLATES = [
    "https://repo.nais.local/repository/raw/nais/{application}/{version}/nais.yaml",
    "https://repo.nais.local/repository/m2internal/nais/{application}/{version}/{application}-{version}.yaml",
]


class VaultSettings(BaseSettings):
    enabled: bool = False
    addr: str = ""
    init_container_image: str = ""
    auth_path: str = ""
    kv_path: str = ""

    model_config = SettingsConfigDict(env_prefix="NAISD_VAULT_", extra="ignore")

    def missing(self) -> List[str]:
        missing = []
        if not self.addr:
            missing.append("vault address not found in environment. Missing NAISD_VAULT_ADDR")
        if not self.init_container_image:
            missing.append("init container image not found in environment. Missing NAISD_VAULT_INIT_CONTAINER_IMAGE")
        if not self.auth_path:
            missing.append("auth path not found in environment. Missing NAISD_VAULT_AUTH_PATH")
        if not self.kv_path:
            missing.append("kv path not found in environment. Missing NAISD_VAULT_KV_PATH")
        return missing


class Settings(BaseSettings):
    cluster_subdomain: str = "nais.local"
    cluster_name: str = "local"
    registry_url: str = "https://fasit.local"
    sbs_public_domain: str = "nais.oera.no"
    alerts_namespace: str = "nais"
    app_cluster_role: str = "nais-app"
    leader_election_image: str = "gcr.io/google_containers/leader-elector:0.5"
    redis_exporter_image: str = "oliver006/redis_exporter:v0.21.1"
    # Comma separated in the environment, with {application} and {version} placeholders
    manifest_url_templates: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_MANIFEST_URL_TEMPLATES))
    http_timeout: float = 10.0
    http_max_retries: int = 3
    http_backoff_factor: float = 0.3
    in_cluster: bool = False
    log_level: str = "INFO"
    vault: VaultSettings = Field(default_factory=VaultSettings)

    model_config = SettingsConfigDict(env_prefix="NAISD_", extra="ignore")

    @field_validator("manifest_url_templates", mode="before")
    @classmethod
    def split_templates(cls, value):
        if isinstance(value, str):
            return [template.strip() for template in value.split(",") if template.strip()]
        return value

    @field_validator("registry_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            settings = cls(vault=VaultSettings())
        except pydantic.ValidationError as e:
            raise ConfigurationError([
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
            ]) from e

        if settings.vault.enabled:
            missing = settings.vault.missing()
            if missing:
                raise ConfigurationError(missing)

        return settings
