"""
Models for the overall service topology.
"""
from typing import List, Dict
from pydantic import BaseModel
from .service_definition import ServiceDescriptor

class OrchestrationConfig(BaseModel):
    """
    Complete topology of a multi-service stack.
    Equivalent to a parsed docker-compose.yml file.
    """
    services: Dict[str, ServiceDescriptor]
    networks: List[str] = []
    volumes: List[str] = []

    def services_mounting(self, host_path: str, base_dir: str = ".") -> List[str]:
        """
        Names of the services that bind-mount the given host directory.
        Relative mount sources are resolved against base_dir.
        """
        return [name for name, svc in self.services.items() if svc.mounts_path(host_path, base_dir)]
