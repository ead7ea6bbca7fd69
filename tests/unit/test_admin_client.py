import pytest

from kcdeploy.errors import AdminApiError, PrimaryServiceAdminAuthError
from kcdeploy.MANAGERS.admin_client import KeycloakAdminClient
from kcdeploy.MANAGERS.realm_configurator import (
    configure_primary_service, desired_realm_attributes, verify_deployment,
)


@pytest.fixture
def keycloak_up(fake_docker, config):
    fake_docker.containers[config.keycloak_container] = {"state": "running"}


class TestKeycloakAdminClient:
    def test_unreachable(self, admin_client):
        assert not admin_client.is_reachable()
        with pytest.raises(PrimaryServiceAdminAuthError):
            admin_client.authenticate("admin", "s3cret-admin")

    def test_authenticate(self, keycloak_up, admin_client, fake_keycloak):
        assert admin_client.is_reachable()
        assert admin_client.authenticate("admin", "s3cret-admin") == "token-abc"
        method, url, _, data, _, _ = fake_keycloak.requests[-1]
        assert method == "POST"
        assert url == "http://localhost:8080/keycloak/realms/master/protocol/openid-connect/token"
        assert data["client_id"] == "admin-cli"

    def test_bad_credentials(self, keycloak_up, admin_client):
        with pytest.raises(PrimaryServiceAdminAuthError) as exc:
            admin_client.authenticate("admin", "wrong")
        assert exc.value.status_code == 401
        assert not exc.value.fatal

    def test_admin_calls_need_token(self, keycloak_up, admin_client):
        with pytest.raises(AdminApiError) as exc:
            admin_client.get_realm("master")
        assert exc.value.status_code == 401

    def test_update_realm(self, keycloak_up, admin_client, fake_keycloak):
        admin_client.authenticate("admin", "s3cret-admin")
        admin_client.update_realm("master", {"attributes": {"frontendUrl": "https://x"}})
        assert admin_client.get_realm("master")["attributes"]["frontendUrl"] == "https://x"

    def test_unknown_realm(self, keycloak_up, admin_client):
        admin_client.authenticate("admin", "s3cret-admin")
        with pytest.raises(AdminApiError, match="HTTP 404"):
            admin_client.update_realm("missing", {})

    def test_base_url_trailing_slash(self, fake_keycloak):
        client = KeycloakAdminClient("http://localhost:8080/keycloak/", session=fake_keycloak)
        assert client._url("/realms/master") == "http://localhost:8080/keycloak/realms/master"


class TestRealmConfiguration:
    def test_desired_attributes(self, config):
        assert desired_realm_attributes(config) == {
            "attributes": {"frontendUrl": "https://auth.example.org/keycloak"}
        }

    def test_configure_then_verify(self, keycloak_up, config, admin_client):
        result = configure_primary_service(admin_client, "admin", "s3cret-admin", "master",
                                           desired_realm_attributes(config))
        assert result.ok
        check = verify_deployment(admin_client, "master", config.expected_issuer())
        assert check.ok
        assert check.details["issuer"] == "https://auth.example.org/keycloak/realms/master"

    def test_configure_failure_is_reported_not_raised(self, keycloak_up, config, admin_client, caplog):
        result = configure_primary_service(admin_client, "admin", "nope", "master",
                                           desired_realm_attributes(config))
        assert not result.ok
        assert isinstance(result.error, PrimaryServiceAdminAuthError)
        assert "Skipping realm configuration" in caplog.text

    def test_verify_mismatch(self, keycloak_up, config, admin_client):
        result = verify_deployment(admin_client, "master", config.expected_issuer())
        assert not result.ok
        assert result.error.actual == "http://localhost:8080/realms/master"
        assert result.error.expected == "https://auth.example.org/keycloak/realms/master"

    def test_verify_unreachable(self, config, admin_client):
        assert not verify_deployment(admin_client, "master", config.expected_issuer()).ok
