"""
Models for the overall target topology.
"""
from typing import List, Dict
from pydantic import BaseModel
from .service_definition import ServiceDefinition


class Topology(BaseModel):
    """
    Complete description of the containers, networks and volumes of one deployment.
    """
    services: Dict[str, ServiceDefinition]
    networks: List[str] = []
    volumes: List[str] = []

    @property
    def primary(self) -> ServiceDefinition:
        return next(svc for svc in self.services.values() if svc.is_primary)

    @property
    def dependents(self) -> List[ServiceDefinition]:
        return [svc for svc in self.services.values() if not svc.is_primary]
