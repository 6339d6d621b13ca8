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
Read-only validation of configuration and host prerequisites.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import psutil

from ..exceptions import PreconditionError
from ..MODELS.deployment_config import DeploymentConfig
from ..RUNNERS.compose_runner import ComposeRunner

logger = logging.getLogger(__name__)


@dataclass
class PreconditionReport:
    """Result of a precondition check."""

    missing_keys: List[str] = field(default_factory=list)
    failed_checks: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_keys and not self.failed_checks

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise PreconditionError(self.missing_keys, self.failed_checks)


class PreconditionChecker:
    """
    Verifies that required keys are set and that the host can run the workflow.
    Never changes anything.
    """

    def __init__(self, config: DeploymentConfig, runner: Optional[ComposeRunner] = None):
        """
        :param config: Deployment configuration.
        :param runner: Used to check the runtime daemon; skipped when None.
        """
        self.config = config
        self.runner = runner

    def missing_keys(self, required: Optional[Iterable[str]] = None) -> List[str]:
        """
        Lists required keys that are absent or empty, in declaration order.

        :param required: Keys to check. Defaults to the configured required keys.
        """
        keys = self.config.required_keys if required is None else required
        return [key for key in keys if not (self.config.get(key) or "").strip()]

    def check(self,
              required: Optional[Iterable[str]] = None,
              include_backup: bool = True) -> PreconditionReport:
        """
        Runs every check and collects the failures.

        :param required: Keys to check. Defaults to the configured required keys.
        :param include_backup: Also check free space for the backup.
        :return: The report; call raise_for_failures() to make it fatal.
        """
        report = PreconditionReport(missing_keys=self.missing_keys(required))
        for key in report.missing_keys:
            logger.error("Missing required configuration key: %s", key)

        if not os.path.isfile(self.config.compose_path):
            report.failed_checks.append(f"compose file not found: {self.config.compose_path}")

        env_path = self.config.env_path
        if env_path and not os.path.isfile(env_path):
            report.failed_checks.append(
                f"env file not found: {env_path} (copy .env.example and configure it)")

        if self.runner is not None and not self.runner.daemon_available():
            report.failed_checks.append("container runtime is not running")

        if include_backup and self.config.backup.enabled:
            problem = self._check_backup_space()
            if problem:
                report.failed_checks.append(problem)

        for problem in report.failed_checks:
            logger.error("Precondition failed: %s", problem)
        if report.ok:
            logger.info("All preconditions satisfied.")
        return report

    def _check_backup_space(self) -> Optional[str]:
        """
        Checks free space on the filesystem that will hold the backup directory.
        """
        path = self.config.backup_dir
        while not os.path.exists(path):
            parent = os.path.dirname(path)
            if parent == path:
                break
            path = parent
        try:
            free_mb = psutil.disk_usage(path).free // (1024 * 1024)
        except OSError as e:
            return f"cannot inspect backup location {path}: {e}"
        if free_mb < self.config.backup.min_free_mb:
            return (f"only {free_mb} MB free for backups in {path}, "
                    f"need {self.config.backup.min_free_mb} MB")
        return None
