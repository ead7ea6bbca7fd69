import os
import stat

import pytest

from kcdeploy.errors import AdminApiError
from kcdeploy.CONVERTERS.to_forward_auth_env import ForwardAuthEnvConverter
from kcdeploy.MANAGERS.client_registrar import ClientRegistrar, ClientRegistration, UserRegistration


@pytest.fixture
def registrar(fake_docker, config, admin_client):
    fake_docker.containers[config.keycloak_container] = {"state": "running"}
    admin_client.authenticate("admin", "s3cret-admin")
    return ClientRegistrar(admin_client, "master")


def _registration(**kwargs):
    return ClientRegistration(client_id="grafana", redirect_uris=["https://grafana.example.org/*"], **kwargs)


class TestClientRegistrar:
    def test_create_then_update(self, registrar, fake_keycloak):
        first = registrar.ensure_client(_registration())
        assert first.client_action == "created"
        assert len(first.client_secret) == 64

        second = registrar.ensure_client(_registration(secret="fixed"))
        assert second.client_action == "updated"
        clients = fake_keycloak.clients["master"]
        assert len(clients) == 1
        assert clients[0]["secret"] == "fixed"
        assert clients[0]["id"] == "uuid-1"

    def test_representation(self):
        rep = _registration(name="Grafana").representation("abc")
        assert rep["clientId"] == "grafana"
        assert rep["name"] == "Grafana"
        assert rep["publicClient"] is False
        assert rep["redirectUris"] == ["https://grafana.example.org/*"]
        assert "email" in rep["defaultClientScopes"]

    def test_user_created_once(self, registrar, fake_keycloak):
        user = UserRegistration(username="Alice", email="alice@example.org", password="pw")
        result = registrar.register(_registration(), user)
        assert result.user_action == "created"
        assert registrar.ensure_user(user) == "exists"
        stored = fake_keycloak.users["master"][0]
        assert stored["credentials"][0]["temporary"] is False
        assert stored["emailVerified"] is True

    def test_user_failure_keeps_client(self, registrar, monkeypatch):
        def fail(*args, **kwargs):
            raise AdminApiError("Listing users failed (HTTP 500)", status_code=500)

        monkeypatch.setattr(registrar.client, "find_user", fail)
        result = registrar.register(_registration(), UserRegistration(username="bob"))
        assert result.client_action == "created"
        assert result.user_action == "failed"


class TestForwardAuthEnv:
    def _converter(self):
        return ForwardAuthEnvConverter(
            issuer="https://auth.example.org/keycloak/realms/master",
            client_id="grafana", client_secret="client-secret", cookie_secret="cookie-secret",
            auth_host="auth.example.org", cookie_domain="example.org",
        )

    def test_render(self):
        text = self._converter().render()
        assert "PROVIDERS_OIDC_ISSUER_URL=https://auth.example.org/keycloak/realms/master" in text
        assert "PROVIDERS_OIDC_CLIENT_SECRET=client-secret" in text
        assert "COOKIE_DOMAIN=example.org" in text
        assert "LIFETIME=86400" in text
        assert "LOGOUT_REDIRECT=https://auth.example.org/keycloak/realms/master/protocol/openid-connect/logout" in text

    def test_file_is_owner_only(self, tmp_path):
        path = tmp_path / "auth" / "grafana.env"
        self._converter().convert(str(path))
        assert path.exists()
        assert stat.S_IMODE(os.stat(path).st_mode) & 0o077 == 0
