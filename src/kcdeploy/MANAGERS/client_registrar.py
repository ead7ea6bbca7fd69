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
Idempotent registration of OIDC clients and users in a running Keycloak.
"""
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..errors import AdminApiError
from .admin_client import KeycloakAdminClient

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_SCOPES = ["web-origins", "role_list", "profile", "roles", "email"]
OPTIONAL_CLIENT_SCOPES = ["address", "phone", "offline_access", "microprofile-jwt"]


class ClientRegistration(BaseModel):
    """
    A confidential OIDC client to create or update.
    """
    client_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    redirect_uris: List[str] = []
    web_origins: List[str] = []
    secret: Optional[str] = None

    def representation(self, secret: str) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "name": self.name or self.client_id,
            "description": self.description or "",
            "enabled": True,
            "protocol": "openid-connect",
            "clientAuthenticatorType": "client-secret",
            "secret": secret,
            "publicClient": False,
            "bearerOnly": False,
            "standardFlowEnabled": True,
            "implicitFlowEnabled": False,
            "directAccessGrantsEnabled": True,
            "serviceAccountsEnabled": False,
            "fullScopeAllowed": True,
            "redirectUris": self.redirect_uris,
            "webOrigins": self.web_origins,
            "attributes": {
                "access.token.lifespan": "3600",
                "client.session.idle.timeout": "1800",
                "client.session.max.lifespan": "86400",
            },
            "defaultClientScopes": DEFAULT_CLIENT_SCOPES,
            "optionalClientScopes": OPTIONAL_CLIENT_SCOPES,
        }


class UserRegistration(BaseModel):
    """
    A user created once if absent; existing users are never modified.
    """
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password: Optional[str] = None

    def representation(self) -> Dict[str, Any]:
        rep: Dict[str, Any] = {
            "username": self.username,
            "enabled": True,
            "emailVerified": bool(self.email),
        }
        if self.email:
            rep["email"] = self.email
        if self.first_name:
            rep["firstName"] = self.first_name
        if self.last_name:
            rep["lastName"] = self.last_name
        if self.password:
            rep["credentials"] = [{"type": "password", "value": self.password, "temporary": False}]
        return rep


@dataclass
class RegistrationResult:
    """What register() did."""

    client_action: str
    client_secret: str
    user_action: Optional[str] = None


class ClientRegistrar:
    """
    Creates or updates a client, and optionally a user, in one realm.
    """
    def __init__(self, client: KeycloakAdminClient, realm: str = "master"):
        """
        :param client: Admin API client; must be authenticated before register().
        :param realm: Target realm.
        """
        self.client = client
        self.realm = realm

    def ensure_client(self, registration: ClientRegistration) -> RegistrationResult:
        """
        Updates the client if one with the same clientId exists, else creates it.
        A new secret is generated unless one is supplied.

        :raises AdminApiError: If Keycloak rejects a request.
        """
        secret = registration.secret or secrets.token_hex(32)
        rep = registration.representation(secret)
        existing = self.client.find_client(self.realm, registration.client_id)
        if existing:
            logger.info("Client '%s' already exists, updating configuration", registration.client_id)
            self.client.update_client(self.realm, existing["id"], rep)
            return RegistrationResult(client_action="updated", client_secret=secret)

        logger.info("Creating client '%s'", registration.client_id)
        self.client.create_client(self.realm, rep)
        return RegistrationResult(client_action="created", client_secret=secret)

    def ensure_user(self, user: UserRegistration) -> str:
        if self.client.find_user(self.realm, user.username):
            logger.info("User '%s' already exists", user.username)
            return "exists"
        logger.info("Creating user '%s'", user.username)
        self.client.create_user(self.realm, user.representation())
        return "created"

    def register(self, registration: ClientRegistration,
                 user: Optional[UserRegistration] = None) -> RegistrationResult:
        """
        Registers the client, then the user. A failed user creation is logged
        and does not undo the client.

        :param registration: Client to register.
        :param user: Optional user to create.
        :return: Actions taken and the client secret in effect.
        """
        result = self.ensure_client(registration)
        if user is not None:
            try:
                result.user_action = self.ensure_user(user)
            except AdminApiError as e:
                logger.warning("Could not create user '%s': %s", user.username, e)
                result.user_action = "failed"
        return result
