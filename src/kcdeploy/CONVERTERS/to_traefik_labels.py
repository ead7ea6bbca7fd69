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
Converts deployment settings into Traefik routing labels for the primary service.
"""
from typing import Dict, Optional

from ..MODELS.deploy_config import DeployConfig

BACKEND_PORT = 8080


class TraefikLabelConverter:
    """
    Builds the static label set Traefik reads from the Keycloak container.

    A secure router always matches the public hostname. A plain-HTTP router for
    the internal hostname is added when one is configured.
    """

    def __init__(self, config: DeployConfig, service_name: str = "keycloak"):
        """
        :param config: The deployment configuration.
        :param service_name: Prefix for router and service names.
        """
        self.config = config
        self.service_name = service_name

    def rule(self, hostname: str) -> str:
        rule = f"Host(`{hostname}`)"
        if self.config.relative_path:
            rule += f" && PathPrefix(`{self.config.relative_path}`)"
        return rule

    def _router(self, suffix: str, hostname: str, entrypoint: str,
                cert_resolver: Optional[str] = None) -> Dict[str, str]:
        prefix = f"traefik.http.routers.{self.service_name}-{suffix}"
        labels = {
            f"{prefix}.rule": self.rule(hostname),
            f"{prefix}.entrypoints": entrypoint,
            f"{prefix}.service": f"{self.service_name}-service",
        }
        if cert_resolver:
            labels[f"{prefix}.tls.certresolver"] = cert_resolver
        return labels

    def convert(self) -> Dict[str, str]:
        """
        Generates the label set.

        :return: Label keys and values, in a stable order.
        """
        cfg = self.config
        labels = {
            "traefik.enable": "true",
            "traefik.docker.network": cfg.network,
            f"traefik.http.services.{self.service_name}-service.loadbalancer.server.port": str(BACKEND_PORT),
        }
        labels.update(self._router("secure", cfg.public_hostname, cfg.entrypoint_secure, cfg.cert_resolver))
        if cfg.local_hostname:
            labels.update(self._router("local", cfg.local_hostname, cfg.entrypoint_local))
        return labels
