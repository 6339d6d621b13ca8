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
Orchestration of the deployment workflow:
preconditions, backup, directory preparation, startup, readiness and verification.
"""
import logging
import time
from typing import Callable, List, Optional

from ..exceptions import DeploymentError, RuntimeCommandError, StackupError
from ..MODELS.deployment_attempt import DeploymentAttempt, ServiceState, Stage
from ..MODELS.deployment_config import DeploymentConfig
from ..MODELS.orchestration_config import OrchestrationConfig
from ..PARSERS.compose_parser import ComposeParser
from ..RUNNERS.compose_runner import ComposeRunner
from .backup_manager import BackupManager
from .container_permissions import ContainerPermissionFixer
from .health_monitor import HealthMonitor
from .health_verifier import HealthVerifier
from .log_aggregator import LogAggregator
from .precondition_checker import PreconditionChecker, PreconditionReport
from .volume_manager import VolumeManager

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """
    Runs the deployment workflow for one compose stack.

    Stages run strictly in order. A stage either completes or raises; the first
    fatal error aborts the attempt, except for verification whose failures are
    recorded as warnings.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        runner: Optional[ComposeRunner] = None,
        verifier: Optional[HealthVerifier] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initializes the orchestrator.

        :param config: Immutable deployment configuration.
        :param runner: Compose runner; built from the configuration when omitted.
        :param verifier: External health verifier; built from the configuration when omitted.
        :param clock: Monotonic clock for the readiness wait.
        :param sleep: Sleep function for the readiness wait.
        """
        self.config = config
        self.runner = runner or ComposeRunner(config)
        self.checker = PreconditionChecker(config, self.runner)
        self.backups = BackupManager(config, self.runner)
        self.volumes = VolumeManager(config, self.runner)
        self.container_fixer = ContainerPermissionFixer(config, self.runner)
        self.verifier = verifier or HealthVerifier(config)
        self.logs = LogAggregator(self.runner)
        self.clock = clock
        self.sleep = sleep
        self._topology: Optional[OrchestrationConfig] = None

    @property
    def topology(self) -> OrchestrationConfig:
        """
        The parsed compose manifest, read once.
        """
        if self._topology is None:
            parser = ComposeParser(context=dict(self.config.values))
            self._topology = parser.parse(self.config.compose_path)
        return self._topology

    # Workflows

    def check(self) -> PreconditionReport:
        """
        Runs the precondition checks only.
        """
        return self.checker.check()

    def deploy(self, skip_backup: bool = False) -> DeploymentAttempt:
        """
        Full deployment: preconditions, backup, preparation, startup, verification.

        :param skip_backup: Do not dump the database first.
        :return: The finished attempt.
        """
        attempt = DeploymentAttempt(action="deploy")
        logger.info("--- Starting deployment ---")
        try:
            self._check_preconditions(attempt, include_backup=not skip_backup)
            self._backup(attempt, skip_backup)
            self._prepare(attempt)
            self._launch(attempt, pull=True)
        except StackupError as e:
            return self._abort(attempt, e)

        self._verify(attempt)
        attempt.succeed()
        return attempt

    def reset(self, skip_backup: bool = False) -> DeploymentAttempt:
        """
        Stop, cleanup and redeploy.

        The backup is taken before the stack is stopped, while the database
        can still be dumped. Data directories are kept.

        :param skip_backup: Do not dump the database first.
        :return: The finished attempt.
        """
        attempt = DeploymentAttempt(action="reset")
        logger.info("--- Full reset ---")
        try:
            self._check_preconditions(attempt, include_backup=not skip_backup)
            self._backup(attempt, skip_backup)

            attempt.enter(Stage.STOP)
            self.stop()

            attempt.enter(Stage.CLEANUP)
            logger.info("Removing legacy named volumes (if any)...")
            self.volumes.remove_legacy_volumes()

            self._prepare(attempt, running=[])
            self._launch(attempt, pull=True)
        except StackupError as e:
            return self._abort(attempt, e)

        self._verify(attempt)
        attempt.succeed()
        return attempt

    def start(self) -> DeploymentAttempt:
        """
        Starts the stack without pulling images or taking a backup.
        """
        attempt = DeploymentAttempt(action="start")
        logger.info("--- Starting services ---")
        try:
            self._check_preconditions(attempt, include_backup=False)
            self._prepare(attempt)
            self._launch(attempt, pull=False)
        except StackupError as e:
            return self._abort(attempt, e)
        attempt.succeed()
        return attempt

    def stop(self) -> None:
        """
        Stops and removes the stack's containers. Volumes and data are kept.
        """
        logger.info("Stopping services...")
        self.runner.down(remove_orphans=True)
        logger.info("Services stopped.")

    def status(self) -> List[ServiceState]:
        """
        Current state of every container. Read-only.
        """
        return self.runner.ps()

    def show_logs(self, service: Optional[str] = None, lines: Optional[int] = 100,
                  follow: bool = False) -> None:
        """
        Prints service logs. Read-only.
        """
        self.logs.show(service=service, lines=lines, follow=follow)

    def fix_permissions(self, containers: bool = False, force: bool = False) -> List[str]:
        """
        Re-applies host directory ownership, and optionally the container fixes.

        :param containers: Also fix paths inside running containers.
        :param force: Change ownership even of directories in use.
        :return: Warnings collected along the way.
        """
        running = self.runner.running_services()
        warnings = self.volumes.prepare(self.topology, running=running, force=force)
        for line in self.volumes.describe():
            logger.info("%s", line)
        if containers:
            warnings += self.container_fixer.apply(running)
        return warnings

    # Stages

    def _check_preconditions(self, attempt: DeploymentAttempt, include_backup: bool) -> None:
        attempt.enter(Stage.CHECK_PRECONDITIONS)
        logger.info("Checking prerequisites...")
        self.checker.check(include_backup=include_backup).raise_for_failures()
        services = self.topology.services
        logger.info("Compose file defines %d service(s): %s", len(services), ", ".join(services))

    def _backup(self, attempt: DeploymentAttempt, skip: bool) -> None:
        attempt.enter(Stage.BACKUP)
        if not self.config.backup.enabled:
            logger.info("Backups are disabled in the settings.")
            return
        if skip:
            attempt.warn("Database backup skipped on request.")
            logger.warning("Database backup skipped on request.")
            return

        service = self.config.backup.service
        if service not in self.runner.running_services():
            message = f"Database service '{service}' is not running; no backup taken."
            logger.warning("%s", message)
            attempt.warn(message)
            return
        attempt.artifact = self.backups.create()

    def _prepare(self, attempt: DeploymentAttempt, running: Optional[List[str]] = None) -> None:
        attempt.enter(Stage.PREPARE)
        if not self.config.data_directories:
            return
        logger.info("Preparing data directories...")
        if running is None:
            running = sorted(self.runner.running_services())
        for warning in self.volumes.prepare(self.topology, running=running):
            attempt.warn(warning)

    def _launch(self, attempt: DeploymentAttempt, pull: bool) -> None:
        attempt.enter(Stage.DEPLOY)
        if pull:
            logger.info("Pulling latest images...")
            self.runner.pull()
        logger.info("Starting services...")
        self.runner.up(remove_orphans=True)

        monitor = HealthMonitor(self.runner, self.topology, self.config.readiness,
                                clock=self.clock, sleep=self.sleep)
        result = monitor.wait_until_ready()
        attempt.services = result.states

        if not result.ok:
            message = ("Deployment failed - unhealthy or exited services detected: "
                       + "; ".join(monitor.describe_failures(result)))
            if result.blocked:
                message += f" (dependents affected: {', '.join(result.blocked)})"
            raise DeploymentError(message, failed_services=result.failed,
                                  log_tail=self._collect_logs())

        for name in result.pending:
            attempt.warn(f"Service {name} is still starting after "
                         f"{self.config.readiness.grace_period:.0f}s.")
        logger.info("All services are running (%.0fs).", result.elapsed)

        for warning in self.container_fixer.apply([s.service for s in result.states
                                                   if s.state == "running"]):
            attempt.warn(warning)

    def _verify(self, attempt: DeploymentAttempt) -> None:
        attempt.enter(Stage.VERIFY)
        logger.info("Verifying the application...")
        result = self.verifier.verify()
        if not result.ok:
            attempt.warn(str(result.warning))
        attempt.access_url = self.verifier.access_url

    def _collect_logs(self) -> str:
        lines = self.config.readiness.log_tail
        if not lines:
            return ""
        try:
            return self.logs.tail(lines=lines)
        except RuntimeCommandError as e:
            return f"(logs unavailable: {e})"

    def _abort(self, attempt: DeploymentAttempt, error: StackupError) -> DeploymentAttempt:
        logger.error("%s failed at stage '%s': %s", attempt.action.capitalize(),
                     attempt.stage.value, error)
        attempt.abort(error)
        return attempt
