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
Post-start configuration and verification of the primary service. Both steps
are best-effort: they log failures and report them, but never raise.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import AdminApiError, PostDeployVerificationMismatch
from ..MODELS.deploy_config import DeployConfig
from .admin_client import KeycloakAdminClient

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Outcome of a best-effort step."""

    ok: bool
    error: Optional[Exception] = None
    details: Dict[str, Any] = field(default_factory=dict)


def desired_realm_attributes(config: DeployConfig) -> Dict[str, Any]:
    """Realm fields the orchestrator keeps in line with the deployment settings."""
    return {"attributes": {"frontendUrl": config.public_base_url}}


def configure_primary_service(client: KeycloakAdminClient, username: str, password: str,
                              realm: str, desired: Dict[str, Any]) -> StepResult:
    """
    Authenticates with the admin password grant and PUTs the desired realm fields.

    :param client: Admin API client for the freshly deployed instance.
    :param username: Admin username.
    :param password: Admin password.
    :param realm: Realm to update.
    :param desired: Partial realm representation.
    :return: StepResult; ok is False if anything went wrong.
    """
    try:
        client.authenticate(username, password)
        client.update_realm(realm, desired)
    except AdminApiError as e:
        logger.warning("Skipping realm configuration for '%s': %s", realm, e)
        return StepResult(ok=False, error=e)
    logger.info("Realm '%s' updated: %s", realm, ", ".join(desired))
    return StepResult(ok=True, details=desired)


def verify_deployment(client: KeycloakAdminClient, realm: str, expected_issuer: str) -> StepResult:
    """
    Compares the discovery document's issuer against the expected public URL.

    :param client: Admin API client.
    :param realm: Realm to probe.
    :param expected_issuer: e.g. https://auth.example.org/keycloak/realms/master
    :return: StepResult with the observed issuer in details.
    """
    try:
        issuer = client.openid_configuration(realm).get("issuer")
    except AdminApiError as e:
        logger.warning("Verification of realm '%s' failed: %s", realm, e)
        return StepResult(ok=False, error=e)

    if issuer != expected_issuer:
        error = PostDeployVerificationMismatch(expected_issuer, issuer)
        logger.warning("%s", error)
        return StepResult(ok=False, error=error, details={"issuer": issuer})

    logger.info("Issuer verified: %s", issuer)
    return StepResult(ok=True, details={"issuer": issuer})
