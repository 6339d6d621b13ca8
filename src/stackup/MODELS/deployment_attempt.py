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
Runtime records of a deployment: observed service states, backup artifacts and
the attempt itself.
"""
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from ..exceptions import StackupError


class Stage(str, Enum):
    """Stages of one deployment attempt, in execution order."""

    START = "start"
    CHECK_PRECONDITIONS = "check_preconditions"
    BACKUP = "backup"
    STOP = "stop"
    CLEANUP = "cleanup"
    PREPARE = "prepare"
    DEPLOY = "deploy"
    VERIFY = "verify"
    DONE = "done"


class Outcome(str, Enum):
    """Terminal outcome of an attempt."""

    SUCCESS = "success"
    SUCCESS_WITH_WARNING = "success_with_warning"
    ABORTED = "aborted"


@dataclass(frozen=True)
class BackupArtifact:
    """A compressed database dump written before a deployment."""

    path: str
    size: int
    created_at: datetime

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


@dataclass
class ServiceState:
    """
    One service as reported by the container runtime.

    Attributes:
        service: Compose service name.
        state: Container state (running, exited, restarting, created, paused, dead).
        health: Health status (healthy, unhealthy, starting) or empty when the
            service has no health check.
        exit_code: Container exit code, meaningful once exited.
        container: Container name.
        status: Human readable status column.
    """

    service: str
    state: str
    health: str = ""
    exit_code: int = 0
    container: str = ""
    status: str = ""

    def is_completed(self) -> bool:
        return self.state == "exited" and self.exit_code == 0

    def is_failed(self, allow_completed: bool = False) -> bool:
        """
        True when the service is in a state that fails a deployment.

        Args:
            allow_completed: Treat a clean exit as success (one-shot services).
        """
        if allow_completed and self.is_completed():
            return False
        return self.state in ("exited", "dead") or self.health == "unhealthy"

    def is_ready(self, allow_completed: bool = False) -> bool:
        """True when the service is running and healthy, or has no health check."""
        if allow_completed and self.is_completed():
            return True
        return self.state == "running" and self.health in ("", "healthy")

    @property
    def display_status(self) -> str:
        if self.health:
            return f"{self.state} ({self.health})"
        if self.state == "exited":
            return f"exited({self.exit_code})"
        return self.state


@dataclass
class DeploymentAttempt:
    """
    Ephemeral record of one deploy/reset run. Discarded after reporting.
    """

    action: str = "deploy"
    stage: Stage = Stage.START
    outcome: Optional[Outcome] = None
    failed_stage: Optional[Stage] = None
    error: Optional[StackupError] = None
    warnings: List[str] = field(default_factory=list)
    artifact: Optional[BackupArtifact] = None
    services: List[ServiceState] = field(default_factory=list)
    log_tail: str = ""
    access_url: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def enter(self, stage: Stage) -> None:
        if self.outcome is not None:
            raise RuntimeError(f"Attempt already finished with {self.outcome.value}")
        self.stage = stage

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def abort(self, error: StackupError) -> None:
        self.failed_stage = self.stage
        self.error = error
        self.log_tail = getattr(error, "log_tail", "") or self.log_tail
        self._finish(Outcome.ABORTED)

    def succeed(self) -> None:
        self.stage = Stage.DONE
        self._finish(Outcome.SUCCESS_WITH_WARNING if self.warnings else Outcome.SUCCESS)

    def _finish(self, outcome: Outcome) -> None:
        self.outcome = outcome
        self.finished_at = datetime.now(timezone.utc)

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.SUCCESS_WITH_WARNING)

    @property
    def exit_code(self) -> int:
        if self.outcome is None:
            raise RuntimeError("Attempt has not finished")
        return 0 if self.ok else 1

    @property
    def duration(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()
