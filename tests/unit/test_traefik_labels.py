from kcdeploy.CONVERTERS.to_traefik_labels import TraefikLabelConverter
from kcdeploy.MODELS.deploy_config import DeployConfig


def test_labels_with_relative_path_and_local_host(config):
    labels = TraefikLabelConverter(config).convert()
    assert labels == {
        "traefik.enable": "true",
        "traefik.docker.network": "traefik-proxy",
        "traefik.http.services.keycloak-service.loadbalancer.server.port": "8080",
        "traefik.http.routers.keycloak-secure.rule": "Host(`auth.example.org`) && PathPrefix(`/keycloak`)",
        "traefik.http.routers.keycloak-secure.entrypoints": "websecure",
        "traefik.http.routers.keycloak-secure.service": "keycloak-service",
        "traefik.http.routers.keycloak-secure.tls.certresolver": "letsencrypt",
        "traefik.http.routers.keycloak-local.rule": "Host(`auth.lan`) && PathPrefix(`/keycloak`)",
        "traefik.http.routers.keycloak-local.entrypoints": "web",
        "traefik.http.routers.keycloak-local.service": "keycloak-service",
    }


def test_root_path_without_local_host(env_values):
    del env_values["LOCAL_HOSTNAME"]
    del env_values["KC_HTTP_RELATIVE_PATH"]
    env_values["TRAEFIK_CERT_RESOLVER"] = "internal-ca"
    labels = TraefikLabelConverter(DeployConfig.from_mapping(env_values)).convert()
    assert labels["traefik.http.routers.keycloak-secure.rule"] == "Host(`auth.example.org`)"
    assert labels["traefik.http.routers.keycloak-secure.tls.certresolver"] == "internal-ca"
    assert not any(".keycloak-local." in key for key in labels)


def test_custom_service_name(config):
    labels = TraefikLabelConverter(config, service_name="sso").convert()
    assert labels["traefik.http.routers.sso-secure.service"] == "sso-service"
