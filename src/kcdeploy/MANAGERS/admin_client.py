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
Client for the Keycloak admin REST API.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from ..errors import AdminApiError, PrimaryServiceAdminAuthError

logger = logging.getLogger(__name__)

ADMIN_CLIENT_ID = "admin-cli"


class KeycloakAdminClient:
    """
    Talks to one Keycloak instance. The bearer token lives only as long as
    this object and is never written anywhere.
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: float = 10.0, verify: bool = True):
        """
        Initialize the client.

        Args:
            base_url: Keycloak base URL including any relative path.
            session: Optional requests session (injectable for tests).
            timeout: Per-request timeout in seconds.
            verify: Verify TLS certificates.
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.verify = verify
        self._token: Optional[str] = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", {})
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            return self.session.request(method, self._url(path), headers=headers,
                                        timeout=self.timeout, verify=self.verify, **kwargs)
        except requests.RequestException as e:
            raise AdminApiError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _expect(response: requests.Response, *codes: int, action: str) -> requests.Response:
        if response.status_code not in codes:
            raise AdminApiError(
                f"{action} failed (HTTP {response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def is_reachable(self) -> bool:
        """True when the master realm endpoint answers with 2xx."""
        try:
            response = self._request("GET", "realms/master")
        except AdminApiError:
            return False
        return 200 <= response.status_code < 300

    def authenticate(self, username: str, password: str, realm: str = "master") -> str:
        """
        Obtain an admin access token via the password grant.

        Args:
            username: Admin username.
            password: Admin password.
            realm: Realm holding the admin account.

        Returns:
            The access token.

        Raises:
            PrimaryServiceAdminAuthError: If the grant is rejected or unreachable.
        """
        self._token = None
        data = {
            "client_id": ADMIN_CLIENT_ID,
            "username": username,
            "password": password,
            "grant_type": "password",
        }
        try:
            response = self._request("POST", f"realms/{realm}/protocol/openid-connect/token", data=data)
        except AdminApiError as e:
            raise PrimaryServiceAdminAuthError(str(e)) from e

        if response.status_code != 200:
            raise PrimaryServiceAdminAuthError(
                f"Token request rejected (HTTP {response.status_code})", status_code=response.status_code
            )
        try:
            token = response.json()["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            raise PrimaryServiceAdminAuthError("Token response has no access_token") from e

        self._token = token
        logger.debug("Obtained admin token for %s", username)
        return token

    # Realms

    def get_realm(self, realm: str) -> Dict[str, Any]:
        response = self._expect(self._request("GET", f"admin/realms/{realm}"), 200, action=f"Reading realm {realm}")
        return response.json()

    def update_realm(self, realm: str, representation: Dict[str, Any]) -> None:
        """PUT a (partial) realm representation. Keycloak merges the given fields."""
        response = self._request("PUT", f"admin/realms/{realm}", json=representation)
        self._expect(response, 204, 200, action=f"Updating realm {realm}")

    def openid_configuration(self, realm: str) -> Dict[str, Any]:
        """Fetch the realm's OpenID discovery document."""
        response = self._request("GET", f"realms/{realm}/.well-known/openid-configuration")
        self._expect(response, 200, action=f"Reading discovery document of {realm}")
        try:
            return response.json()
        except ValueError as e:
            raise AdminApiError("Discovery document is not JSON") from e

    # Clients

    def find_client(self, realm: str, client_id: str) -> Optional[Dict[str, Any]]:
        response = self._request("GET", f"admin/realms/{realm}/clients", params={"clientId": client_id})
        clients: List[Dict[str, Any]] = self._expect(response, 200, action="Listing clients").json()
        return next((c for c in clients if c.get("clientId") == client_id), None)

    def create_client(self, realm: str, representation: Dict[str, Any]) -> None:
        response = self._request("POST", f"admin/realms/{realm}/clients", json=representation)
        self._expect(response, 201, action=f"Creating client {representation.get('clientId')}")

    def update_client(self, realm: str, client_uuid: str, representation: Dict[str, Any]) -> None:
        response = self._request("PUT", f"admin/realms/{realm}/clients/{client_uuid}", json=representation)
        self._expect(response, 204, 200, action=f"Updating client {representation.get('clientId')}")

    # Users

    def find_user(self, realm: str, username: str) -> Optional[Dict[str, Any]]:
        response = self._request("GET", f"admin/realms/{realm}/users",
                                 params={"username": username, "exact": "true"})
        users: List[Dict[str, Any]] = self._expect(response, 200, action="Listing users").json()
        return next((u for u in users if u.get("username") == username.lower()), None)

    def create_user(self, realm: str, representation: Dict[str, Any]) -> None:
        response = self._request("POST", f"admin/realms/{realm}/users", json=representation)
        self._expect(response, 201, action=f"Creating user {representation.get('username')}")
