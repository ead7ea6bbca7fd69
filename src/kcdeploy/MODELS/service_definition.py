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
Models for defining services, including readiness probes, ports and mounts.
"""
from typing import List, Dict, Optional, Literal
from pydantic import BaseModel, Field, model_validator
from enum import Enum


class ServiceRole(str, Enum):
    """
    How the orchestrator treats a service on every run.
    """
    DEPENDENT = "dependent"  # created once, kept across runs
    PRIMARY = "primary"      # removed and recreated every run


class ReadinessProbe(BaseModel):
    """
    Describes how to decide that a service is usable.
    """
    kind: Literal["log", "exec", "http", "tcp"]
    token: Optional[str] = None          # log
    command: List[str] = []              # exec
    url: Optional[str] = None            # http
    host: Optional[str] = None           # tcp
    port: Optional[int] = None           # tcp
    interval: Optional[float] = None
    attempts: Optional[int] = None

    @model_validator(mode="after")
    def _check_target(self) -> "ReadinessProbe":
        missing = {
            "log": self.token is None,
            "exec": not self.command,
            "http": self.url is None,
            "tcp": self.host is None or self.port is None,
        }[self.kind]
        if missing:
            raise ValueError(f"'{self.kind}' readiness probe is missing its target")
        return self


class VolumeMount(BaseModel):
    """
    Mounts a named volume into a service.
    """
    source: str
    target: str
    read_only: bool = False

    def as_arg(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"{self.source}:{self.target}{suffix}"


class PortMapping(BaseModel):
    """
    Publishes a container port on the host.
    """
    container_port: int
    host_port: Optional[int] = None
    host_ip: Optional[str] = None

    def as_arg(self) -> str:
        if self.host_port is None:
            return str(self.container_port)
        if self.host_ip:
            return f"{self.host_ip}:{self.host_port}:{self.container_port}"
        return f"{self.host_port}:{self.container_port}"


class ServiceDefinition(BaseModel):
    """
    The desired state of a single container.
    """
    name: str                            # logical name within the topology
    container_name: str
    image_name: str
    role: ServiceRole = ServiceRole.DEPENDENT

    command: List[str] = []
    environment: Dict[str, str] = Field(default_factory=dict, repr=False)

    networks: List[str] = []
    ports: List[PortMapping] = []
    volumes: List[VolumeMount] = []

    restart_policy: str = "unless-stopped"
    readiness: Optional[ReadinessProbe] = None
    depends_on: List[str] = []

    labels: Dict[str, str] = {}

    @property
    def is_primary(self) -> bool:
        return self.role == ServiceRole.PRIMARY
