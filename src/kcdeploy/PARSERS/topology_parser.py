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
Builds the target topology, either from the deployment settings alone or from
a compose-like YAML file interpolated with those settings.
"""
import logging
import shlex
import yaml
from typing import Dict, Any, List, Optional
from pydantic import ValidationError

from ..errors import TopologyError
from ..MODELS.deploy_config import DeployConfig
from ..MODELS.orchestration_config import Topology
from ..MODELS.service_definition import (
    ServiceDefinition, ServiceRole, ReadinessProbe, VolumeMount, PortMapping,
)
from ..CONVERTERS.to_traefik_labels import TraefikLabelConverter, BACKEND_PORT
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

POSTGRES_DATA_DIR = "/var/lib/postgresql/data"
KEYCLOAK_DATA_DIR = "/opt/keycloak/data"
LDAP_READY_COMMAND = ["ldapwhoami", "-x", "-H", "ldap://localhost"]


def _check_primary(services: Dict[str, ServiceDefinition]) -> None:
    primaries = [name for name, svc in services.items() if svc.is_primary]
    if len(primaries) != 1:
        raise TopologyError(
            f"Topology must declare exactly one primary service, found {len(primaries)}"
            + (f": {', '.join(primaries)}" if primaries else "")
        )


class TopologyBuilder:
    """
    Derives the default Keycloak topology from a DeployConfig.
    """
    def __init__(self, config: DeployConfig):
        self.config = config

    def build(self) -> Topology:
        """
        :return: Postgres, an optional OpenLDAP directory and Keycloak, wired together.
        """
        cfg = self.config
        services = {"postgres": self._postgres()}
        volumes = [cfg.postgres_volume, cfg.keycloak_volume]
        if cfg.ldap_enabled:
            services["ldap"] = self._ldap()
            volumes += [cfg.ldap_data_volume, cfg.ldap_config_volume]
        services["keycloak"] = self._keycloak(depends_on=list(services))
        _check_primary(services)
        return Topology(services=services, networks=[cfg.network], volumes=volumes)

    def _postgres(self) -> ServiceDefinition:
        cfg = self.config
        return ServiceDefinition(
            name="postgres",
            container_name=cfg.postgres_container,
            image_name=cfg.postgres_image,
            role=ServiceRole.DEPENDENT,
            environment={
                "POSTGRES_DB": cfg.postgres_db,
                "POSTGRES_USER": cfg.postgres_user,
                "POSTGRES_PASSWORD": cfg.postgres_password,
            },
            networks=[cfg.network],
            volumes=[VolumeMount(source=cfg.postgres_volume, target=POSTGRES_DATA_DIR)],
            readiness=ReadinessProbe(
                kind="exec",
                command=["pg_isready", "-U", cfg.postgres_user, "-d", cfg.postgres_db],
            ),
        )

    def _ldap(self) -> ServiceDefinition:
        cfg = self.config
        return ServiceDefinition(
            name="ldap",
            container_name=cfg.ldap_container,
            image_name=cfg.ldap_image,
            role=ServiceRole.DEPENDENT,
            environment={
                "LDAP_ORGANISATION": cfg.ldap_organisation,
                "LDAP_DOMAIN": cfg.ldap_domain,
                "LDAP_ADMIN_PASSWORD": cfg.ldap_admin_password,
            },
            networks=[cfg.network],
            volumes=[
                VolumeMount(source=cfg.ldap_data_volume, target="/var/lib/ldap"),
                VolumeMount(source=cfg.ldap_config_volume, target="/etc/ldap/slapd.d"),
            ],
            readiness=ReadinessProbe(kind="exec", command=LDAP_READY_COMMAND),
        )

    def _keycloak(self, depends_on: List[str]) -> ServiceDefinition:
        cfg = self.config
        command = [
            "start",
            f"--hostname={cfg.public_hostname}",
            "--proxy-headers=xforwarded",
            "--http-enabled=true",
        ]
        if cfg.relative_path:
            command.insert(2, f"--http-relative-path={cfg.relative_path}")
        return ServiceDefinition(
            name="keycloak",
            container_name=cfg.keycloak_container,
            image_name=cfg.keycloak_image,
            role=ServiceRole.PRIMARY,
            command=command,
            environment={
                "KEYCLOAK_ADMIN": cfg.admin_username,
                "KEYCLOAK_ADMIN_PASSWORD": cfg.admin_password,
                "KC_BOOTSTRAP_ADMIN_USERNAME": cfg.admin_username,
                "KC_BOOTSTRAP_ADMIN_PASSWORD": cfg.admin_password,
                "KC_DB": "postgres",
                "KC_DB_URL_HOST": cfg.postgres_container,
                "KC_DB_URL_DATABASE": cfg.postgres_db,
                "KC_DB_USERNAME": cfg.postgres_user,
                "KC_DB_PASSWORD": cfg.postgres_password,
            },
            networks=[cfg.network],
            ports=[PortMapping(container_port=BACKEND_PORT, host_port=cfg.http_port, host_ip="127.0.0.1")],
            volumes=[VolumeMount(source=cfg.keycloak_volume, target=KEYCLOAK_DATA_DIR)],
            labels=TraefikLabelConverter(cfg).convert(),
            readiness=ReadinessProbe(kind="http", url=f"{cfg.admin_url}/realms/master"),
            depends_on=depends_on,
        )


class TopologyParser:
    """
    Parser for compose-like topology YAML files.
    """
    def __init__(self, config: DeployConfig):
        """
        :param config: Settings used to interpolate ${VAR} placeholders.
        """
        self.config = config
        self.context = config.as_interpolation_context()

    def parse(self, topology_path: str) -> Topology:
        """
        Parses a topology file from a path.

        :param topology_path: Path to the YAML file.
        :return: Parsed topology.
        """
        with open(topology_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Topology:
        """
        Parses a topology from YAML text.

        :param content: YAML content.
        :return: Parsed topology.
        :raises MissingConfigError: If a bare ${VAR} is not set.
        :raises TopologyError: If the document is not a valid topology.
        """
        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise TopologyError(f"Topology file is not valid YAML: {e}") from e
        # Substituted text is never parsed as YAML.
        data = self._interpolate(data)
        if not isinstance(data, dict) or not data.get('services'):
            raise TopologyError("Topology file declares no services")

        services = {}
        for name, spec in data['services'].items():
            try:
                services[name] = self._parse_service(name, spec or {})
            except (ValidationError, ValueError, TypeError) as e:
                raise TopologyError(f"Invalid definition for service '{name}': {e}") from e
        _check_primary(services)

        networks = self._names(data.get('networks'))
        volumes = self._names(data.get('volumes'))
        for svc in services.values():
            networks += [n for n in svc.networks if n not in networks]
            volumes += [v.source for v in svc.volumes if v.source not in volumes]
        if not networks:
            networks = [self.config.network]
            for svc in services.values():
                if not svc.networks:
                    svc.networks.append(self.config.network)

        return Topology(services=services, networks=networks, volumes=volumes)

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDefinition:
        """
        Parses a single service block.

        :param name: The logical service name.
        :param spec: The service mapping.
        :return: A ServiceDefinition instance.
        """
        volumes = []
        for v in spec.get('volumes', []):
            if isinstance(v, str):
                parts = v.split(':')
                if len(parts) not in (2, 3):
                    raise ValueError(f"Malformed volume '{v}'")
                volumes.append(VolumeMount(source=parts[0], target=parts[1],
                                           read_only=len(parts) == 3 and parts[2] == 'ro'))
            else:
                volumes.append(VolumeMount(**v))

        ports = []
        for p in spec.get('ports', []):
            if isinstance(p, dict):
                ports.append(PortMapping(container_port=p['target'], host_port=p.get('published'),
                                         host_ip=p.get('host_ip')))
                continue
            parts = str(p).split(':')
            if len(parts) == 3:
                ports.append(PortMapping(host_ip=parts[0], host_port=int(parts[1]), container_port=int(parts[2])))
            elif len(parts) == 2:
                ports.append(PortMapping(host_port=int(parts[0]), container_port=int(parts[1])))
            else:
                ports.append(PortMapping(container_port=int(parts[0])))

        readiness = spec.get('readiness')
        depends_on = spec.get('depends_on', [])
        if isinstance(depends_on, dict):
            depends_on = list(depends_on.keys())

        return ServiceDefinition(
            name=name,
            container_name=spec.get('container_name', name),
            image_name=spec.get('image', ''),
            role=spec.get('role', ServiceRole.DEPENDENT.value),
            command=self._to_list(spec.get('command')),
            environment=self._to_mapping(spec.get('environment')),
            networks=self._to_list(spec.get('networks')),
            ports=ports,
            volumes=volumes,
            restart_policy=spec.get('restart', 'unless-stopped'),
            readiness=ReadinessProbe(**readiness) if readiness else None,
            depends_on=depends_on,
            labels=self._to_mapping(spec.get('labels')),
        )

    def _interpolate(self, node: Any) -> Any:
        """
        Substitutes placeholders in every string value of the parsed document.
        Mapping keys and non-string scalars are left as they are.
        """
        if isinstance(node, str):
            return EnvironmentInterpolator.interpolate(node, self.context)
        if isinstance(node, dict):
            return {key: self._interpolate(value) for key, value in node.items()}
        if isinstance(node, list):
            return [self._interpolate(item) for item in node]
        return node

    @staticmethod
    def _names(val: Any) -> List[str]:
        if not val:
            return []
        if isinstance(val, dict):
            return list(val.keys())
        return [str(v) for v in val]

    @staticmethod
    def _to_list(val: Any) -> List[str]:
        if val is None:
            return []
        if isinstance(val, str):
            return shlex.split(val)
        if isinstance(val, dict):
            return list(val.keys())
        return [str(v) for v in val]

    @staticmethod
    def _to_mapping(val: Any) -> Dict[str, str]:
        if not val:
            return {}
        if isinstance(val, dict):
            return {str(k): "" if v is None else str(v) for k, v in val.items()}
        mapping = {}
        for item in val:
            key, _, value = str(item).partition('=')
            mapping[key] = value
        return mapping


def load_topology(config: DeployConfig, topology_path: Optional[str] = None) -> Topology:
    """
    Returns the topology from a file when one is given, otherwise the default one.
    """
    if topology_path:
        logger.info("Loading topology from %s", topology_path)
        return TopologyParser(config).parse(topology_path)
    return TopologyBuilder(config).build()
