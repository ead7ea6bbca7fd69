"""
Dependency resolution for services to determine provisioning order.
"""
from typing import List
from ..errors import TopologyError
from ..MODELS.orchestration_config import Topology


class DependencyResolver:
    """
    Resolves the provisioning order of services based on their dependencies.
    """
    def resolve_order(self, topology: Topology) -> List[str]:
        """
        Determines the order to bring services up using a depth-first topological sort.
        Ties keep declaration order, so the result is deterministic.

        :param topology: The target topology.
        :return: Service names, dependencies first.
        :raises TopologyError: On unknown dependencies or cycles.
        """
        services = topology.services
        for name, svc in services.items():
            unknown = [dep for dep in svc.depends_on if dep not in services]
            if unknown:
                raise TopologyError(f"Service '{name}' depends on unknown service(s): {', '.join(unknown)}")

        ordered = []
        visited = set()
        path: List[str] = []

        def visit(name):
            if name in path:
                cycle = path[path.index(name):] + [name]
                raise TopologyError(f"Circular dependency detected: {' -> '.join(cycle)}")
            if name in visited:
                return
            path.append(name)
            for dep in services[name].depends_on:
                visit(dep)
            path.pop()
            visited.add(name)
            ordered.append(name)

        for name in services:
            visit(name)

        # Dependents are all brought up before the primary service.
        primaries = {n for n in ordered if services[n].is_primary}
        for name in ordered:
            if name not in primaries and self._reaches(topology, name, primaries):
                raise TopologyError(f"Dependent service '{name}' must not depend on the primary service")
        return [n for n in ordered if n not in primaries] + [n for n in ordered if n in primaries]

    @staticmethod
    def _reaches(topology: Topology, start: str, targets: set) -> bool:
        stack = list(topology.services[start].depends_on)
        seen = set()
        while stack:
            name = stack.pop()
            if name in targets:
                return True
            if name not in seen:
                seen.add(name)
                stack.extend(topology.services[name].depends_on)
        return False
