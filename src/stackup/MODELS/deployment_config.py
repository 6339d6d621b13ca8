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
Immutable deployment configuration.

A DeploymentConfig is built once at startup from the settings file, the .env file
and the process environment, and then handed to every stage. All models here are
frozen; sequences are stored as tuples.
"""
import os
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# The verification host key is not required; when it is empty the probe is skipped with a warning.
DEFAULT_REQUIRED_KEYS = (
    "POSTGRES_USER",
    "POSTGRES_DB",
    "POSTGRES_PASSWORD",
    "REDIS_PASSWORD",
    "OPENPROJECT_SECRET_KEY_BASE",
)


def _parse_owner(owner: str) -> Tuple[int, int]:
    """
    Parses a numeric 'uid:gid' (or bare 'uid') owner specification.
    """
    uid, _, gid = str(owner).partition(":")
    try:
        return int(uid), int(gid or uid)
    except ValueError:
        raise ValueError(f"Owner must be numeric 'uid:gid', got '{owner}'")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class DataDirectory(_Frozen):
    """
    A host directory holding persistent service data, with the ownership the
    service expects at runtime.
    """
    path: str
    uid: int
    gid: int
    mode: int = 0o755

    @model_validator(mode="before")
    @classmethod
    def _split_owner(cls, data: Any) -> Any:
        if isinstance(data, dict) and "owner" in data:
            data = dict(data)
            data["uid"], data["gid"] = _parse_owner(data.pop("owner"))
        return data

    @field_validator("mode", mode="before")
    @classmethod
    def _octal_mode(cls, value: Any) -> int:
        if isinstance(value, str):
            return int(value, 8)
        return value

    @property
    def owner(self) -> str:
        return f"{self.uid}:{self.gid}"


class ContainerPathFix(_Frozen):
    """
    A path inside a running container whose ownership is reset after startup.
    """
    service: str
    path: str
    owner: str = "app:app"
    create: bool = False


class BackupSettings(_Frozen):
    """
    How the pre-deploy database dump is produced.
    """
    enabled: bool = True
    directory: str = "backups"
    prefix: str = "pre-deploy"
    service: str = "db"
    user_key: str = "POSTGRES_USER"
    database_key: str = "POSTGRES_DB"
    # Full argv run inside the service; defaults to 'pg_dump -U <user> <db>'.
    dump_command: Optional[Tuple[str, ...]] = None
    min_free_mb: int = 100


class ReadinessSettings(_Frozen):
    """
    Bounds for waiting on services after 'up'. Seconds.
    """
    grace_period: float = Field(default=90.0, gt=0)
    poll_interval: float = Field(default=5.0, gt=0)
    log_tail: int = Field(default=50, ge=0)


class VerificationSettings(_Frozen):
    """
    External health probe target.
    """
    host_key: str = "OPENPROJECT_HOST__NAME"
    scheme: str = "https"
    path: str = "/health_checks/default"
    timeout: float = Field(default=20.0, gt=0)
    proxy_service: str = "proxy"
    web_service: str = "web"


class DeploymentConfig(_Frozen):
    """
    Everything the stages need, resolved once.
    """
    project_dir: str = "."
    compose_file: str = "docker-compose.yml"
    project_name: Optional[str] = None
    env_file: Optional[str] = ".env"
    compose_command: Tuple[str, ...] = ("docker", "compose")
    docker_command: Tuple[str, ...] = ("docker",)

    required_keys: Tuple[str, ...] = DEFAULT_REQUIRED_KEYS
    values: Dict[str, str] = {}

    backup: BackupSettings = Field(default_factory=BackupSettings)
    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)

    data_directories: Tuple[DataDirectory, ...] = ()
    container_permissions: Tuple[ContainerPathFix, ...] = ()
    # Named volumes from earlier layouts, removed only by 'reset'.
    legacy_volumes: Tuple[str, ...] = ()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def resolve(self, path: str) -> str:
        """
        Resolves a path relative to the project directory.
        """
        path = os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.abspath(os.path.join(self.project_dir, path))

    @property
    def compose_path(self) -> str:
        return self.resolve(self.compose_file)

    @property
    def env_path(self) -> Optional[str]:
        return self.resolve(self.env_file) if self.env_file else None

    @property
    def backup_dir(self) -> str:
        return self.resolve(self.backup.directory)

    @property
    def target_host(self) -> Optional[str]:
        host = self.values.get(self.verification.host_key, "").strip()
        return host or None
