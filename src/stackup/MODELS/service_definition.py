"""
Models for services declared in a compose manifest: restart policies, health checks,
mounts and startup dependencies.
"""
import os
from typing import List, Dict, Optional
from pydantic import BaseModel, Field
from enum import Enum

class RestartPolicyCondition(str, Enum):
    """
    Conditions under which the container runtime restarts a service.
    """
    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"

class RestartPolicy(BaseModel):
    """
    Restart policy as declared in the manifest. Enforcing it is the runtime's job.
    """
    condition: RestartPolicyCondition = RestartPolicyCondition.NO
    max_retries: int = 0

class DependencyCondition(str, Enum):
    """
    The state a dependency must reach before its dependent is started.
    """
    SERVICE_STARTED = "service_started"
    SERVICE_HEALTHY = "service_healthy"
    SERVICE_COMPLETED_SUCCESSFULLY = "service_completed_successfully"

class HealthCheck(BaseModel):
    """
    A command the runtime runs to decide whether a service is healthy.
    Durations are in seconds.
    """
    test: List[str]
    interval: float = 30.0
    timeout: float = 30.0
    retries: int = 3
    start_period: float = 0.0

    @property
    def disabled(self) -> bool:
        return not self.test or self.test[0] == "NONE"

class VolumeMount(BaseModel):
    """
    Defines a mapping between a host path (or named volume) and a container path.
    """
    source: str
    target: str
    read_only: bool = False

    @property
    def is_bind(self) -> bool:
        """True when the source is a host path rather than a named volume."""
        return self.source.startswith(("/", ".", "~"))

class ServiceDescriptor(BaseModel):
    """
    A single service of the stack, as far as deployment ordering and readiness care.
    """
    name: str
    image: str = ""
    command: List[str] = []

    # Lifecycle
    restart_policy: RestartPolicy = Field(default_factory=RestartPolicy)
    health_check: Optional[HealthCheck] = None
    depends_on: Dict[str, DependencyCondition] = {}

    # Storage
    volumes: List[VolumeMount] = []

    @property
    def has_health_check(self) -> bool:
        return self.health_check is not None and not self.health_check.disabled

    def mounts_path(self, host_path: str, base_dir: str = ".") -> bool:
        """
        Checks whether any bind mount of this service sources the given host path.

        :param host_path: Absolute host directory.
        :param base_dir: Directory relative mount sources are resolved against.
        :return: True if the service mounts it (or a path beneath it).
        """
        normalized = os.path.abspath(host_path)
        for mount in self.volumes:
            if not mount.is_bind:
                continue
            source = os.path.abspath(os.path.join(base_dir, os.path.expanduser(mount.source)))
            if source == normalized or source.startswith(normalized + "/"):
                return True
        return False
