"""
Dependency resolution for services to determine readiness and shutdown order.
"""
from typing import List, Dict, Set
from ..exceptions import CircularDependencyError
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import DependencyCondition

class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """
    def resolve_order(self, config: OrchestrationConfig) -> List[str]:
        """
        Determines the order in which services become ready using topological sort.
        Dependencies always come before their dependents; ties keep manifest order.

        :param config: The orchestration configuration.
        :return: Service names in the order they should be awaited.
        :raises CircularDependencyError: If a circular dependency is detected.
        """
        services = config.services
        dependencies = {name: list(svc.depends_on) for name, svc in services.items()}

        ordered = []
        visited: Set[str] = set()
        processing: List[str] = []

        def visit(name):
            """
            Recursive function for topological sort.
            """
            if name in processing:
                cycle = processing[processing.index(name):] + [name]
                raise CircularDependencyError(cycle)
            if name not in visited:
                processing.append(name)
                for dep in dependencies.get(name, []):
                    if dep in services: # Only depend on services defined in the config
                        visit(dep)
                processing.pop()
                visited.add(name)
                ordered.append(name)

        for name in services:
            visit(name)

        return ordered

    def completion_targets(self, config: OrchestrationConfig) -> Set[str]:
        """
        Services that some dependent waits on with service_completed_successfully.
        A clean exit of these is expected, not a failure.

        :param config: The orchestration configuration.
        :return: Names of one-shot services.
        """
        targets = set()
        for svc in config.services.values():
            for dep, condition in svc.depends_on.items():
                if condition == DependencyCondition.SERVICE_COMPLETED_SUCCESSFULLY:
                    targets.add(dep)
        return targets

    def dependents(self, config: OrchestrationConfig) -> Dict[str, List[str]]:
        """
        Maps every service to the services that depend on it directly.
        """
        result: Dict[str, List[str]] = {name: [] for name in config.services}
        for name, svc in config.services.items():
            for dep in svc.depends_on:
                if dep in result:
                    result[dep].append(name)
        return result
