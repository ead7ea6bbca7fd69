# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Immutable deployment configuration built once from an env file.
"""
import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import InvalidConfigError, MissingConfigError
from ..REGISTRY.image_reference import ImageReference

logger = logging.getLogger(__name__)

REQUIRED_KEYS: Tuple[str, ...] = (
    "KEYCLOAK_ADMIN",
    "KEYCLOAK_ADMIN_PASSWORD",
    "POSTGRES_DB",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "PUBLIC_HOSTNAME",
)


def validate_configuration(values: Mapping[str, Optional[str]],
                           required_keys: Iterable[str] = REQUIRED_KEYS) -> None:
    """
    Checks that every required key is present and non-empty.

    :param values: Raw configuration mapping.
    :param required_keys: Keys that must be set.
    :raises MissingConfigError: For the first key that is absent or blank.
    """
    for key in required_keys:
        value = values.get(key)
        if value is None or not str(value).strip():
            raise MissingConfigError(key)


class DeployConfig(BaseModel):
    """
    Every setting a provisioning run needs. Field aliases are the env file keys.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    # Credentials
    admin_username: str = Field(alias="KEYCLOAK_ADMIN")
    admin_password: str = Field(alias="KEYCLOAK_ADMIN_PASSWORD", repr=False)
    postgres_db: str = Field(alias="POSTGRES_DB")
    postgres_user: str = Field(alias="POSTGRES_USER")
    postgres_password: str = Field(alias="POSTGRES_PASSWORD", repr=False)

    # Hostnames and paths
    public_hostname: str = Field(alias="PUBLIC_HOSTNAME")
    local_hostname: Optional[str] = Field(default=None, alias="LOCAL_HOSTNAME")
    relative_path: str = Field(default="", alias="KC_HTTP_RELATIVE_PATH")
    realm: str = Field(default="master", alias="KEYCLOAK_REALM")
    http_port: int = Field(default=8080, alias="KEYCLOAK_HTTP_PORT")
    admin_url_override: Optional[str] = Field(default=None, alias="KEYCLOAK_ADMIN_URL")

    # Images
    keycloak_image: str = Field(default="quay.io/keycloak/keycloak:latest", alias="KEYCLOAK_IMAGE")
    postgres_image: str = Field(default="postgres:15", alias="POSTGRES_IMAGE")

    # Resource names
    keycloak_container: str = Field(default="keycloak", alias="KEYCLOAK_CONTAINER")
    postgres_container: str = Field(default="keycloak-postgres", alias="POSTGRES_CONTAINER")
    network: str = Field(default="traefik-proxy", alias="NETWORK")
    postgres_volume: str = Field(default="keycloak_pg_data", alias="POSTGRES_VOLUME")
    keycloak_volume: str = Field(default="keycloak_data", alias="KEYCLOAK_VOLUME")

    # Reverse proxy
    entrypoint_secure: str = Field(default="websecure", alias="TRAEFIK_ENTRYPOINT_SECURE")
    entrypoint_local: str = Field(default="web", alias="TRAEFIK_ENTRYPOINT_LOCAL")
    cert_resolver: str = Field(default="letsencrypt", alias="TRAEFIK_CERT_RESOLVER")

    # Directory service
    ldap_admin_password: Optional[str] = Field(default=None, alias="LDAP_ADMIN_PASSWORD", repr=False)
    ldap_image: str = Field(default="osixia/openldap:1.5.0", alias="LDAP_IMAGE")
    ldap_container: str = Field(default="keycloak-ldap", alias="LDAP_CONTAINER")
    ldap_domain: str = Field(default="example.org", alias="LDAP_DOMAIN")
    ldap_organisation: str = Field(default="Example", alias="LDAP_ORGANISATION")
    ldap_data_volume: str = Field(default="keycloak_ldap_data", alias="LDAP_DATA_VOLUME")
    ldap_config_volume: str = Field(default="keycloak_ldap_config", alias="LDAP_CONFIG_VOLUME")

    # Runtime behaviour
    docker_command: str = Field(default="docker", alias="DOCKER_COMMAND")
    readiness_interval: float = Field(default=2.0, alias="READINESS_INTERVAL")
    readiness_attempts: int = Field(default=60, alias="READINESS_ATTEMPTS")

    @field_validator("local_hostname", "admin_url_override", "ldap_admin_password", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("relative_path")
    @classmethod
    def _check_relative_path(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if value and not value.startswith("/"):
            raise ValueError("must be empty or start with '/'")
        return value

    @field_validator("keycloak_image", "postgres_image", "ldap_image")
    @classmethod
    def _check_image(cls, value: str) -> str:
        ImageReference.parse(value)
        return value

    @field_validator("http_port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("must be between 1 and 65535")
        return value

    @field_validator("readiness_interval", "readiness_attempts")
    @classmethod
    def _check_positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]],
                     required_keys: Iterable[str] = REQUIRED_KEYS) -> "DeployConfig":
        """
        Validates presence of required keys, then builds the config.

        :param values: Raw key/value pairs, typically an env file.
        :param required_keys: Keys that must be non-empty.
        :return: The frozen configuration.
        :raises MissingConfigError: If a required key is missing.
        :raises InvalidConfigError: If a value fails validation.
        """
        validate_configuration(values, required_keys)
        cleaned = {k: v for k, v in values.items() if v is not None}
        try:
            config = cls.model_validate(cleaned)
        except ValidationError as e:
            error = e.errors()[0]
            field_name = error["loc"][0] if error["loc"] else "?"
            raise InvalidConfigError(cls._alias_for(str(field_name)), error["msg"]) from e

        for key, image in (("KEYCLOAK_IMAGE", config.keycloak_image),
                           ("POSTGRES_IMAGE", config.postgres_image),
                           ("LDAP_IMAGE", config.ldap_image)):
            if ImageReference.parse(image).is_floating:
                logger.warning("%s uses a floating tag (%s); redeploys may change versions", key, image)
        return config

    @classmethod
    def _alias_for(cls, name: str) -> str:
        field = cls.model_fields.get(name)
        if field is not None and field.alias:
            return field.alias
        return name

    @property
    def ldap_enabled(self) -> bool:
        return self.ldap_admin_password is not None

    @property
    def public_base_url(self) -> str:
        """Externally visible base URL, e.g. https://auth.example.org/keycloak."""
        return f"https://{self.public_hostname}{self.relative_path}"

    @property
    def admin_url(self) -> str:
        """Base URL the orchestrator uses to reach the admin API from the host."""
        if self.admin_url_override:
            return self.admin_url_override.rstrip("/")
        return f"http://localhost:{self.http_port}{self.relative_path}"

    def expected_issuer(self, realm: Optional[str] = None) -> str:
        return f"{self.public_base_url}/realms/{realm or self.realm}"

    def as_interpolation_context(self) -> Dict[str, str]:
        """Env-style view of the config used for ${VAR} interpolation."""
        context = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value is not None:
                context[field.alias or name] = str(value)
        context["KEYCLOAK_ADMIN_URL"] = self.admin_url
        context["PUBLIC_BASE_URL"] = self.public_base_url
        return context
