"""
Ownership fixes applied inside running containers after startup.
"""
import logging
from typing import Iterable, List, Optional

from ..exceptions import RuntimeCommandError
from ..MODELS.deployment_config import DeploymentConfig
from ..RUNNERS.compose_runner import ComposeRunner

logger = logging.getLogger(__name__)

class ContainerPermissionFixer:
    """
    Runs 'chown -R' as root inside running service containers for the configured
    paths. Best effort: failures become warnings.
    """
    def __init__(self, config: DeploymentConfig, runner: ComposeRunner):
        self.config = config
        self.runner = runner

    def apply(self, running: Optional[Iterable[str]] = None) -> List[str]:
        """
        Applies every configured fix whose service is running.

        :param running: Running service names; queried from the runtime when None.
        :return: Warnings for fixes that could not be applied.
        """
        fixes = self.config.container_permissions
        if not fixes:
            return []
        running = set(self.runner.running_services() if running is None else running)

        warnings = []
        for fix in fixes:
            if fix.service not in running:
                logger.debug("Skipping %s in %s: service not running", fix.path, fix.service)
                continue
            logger.info("Fixing ownership of %s inside %s", fix.path, fix.service)
            commands = []
            if fix.create:
                commands.append(["mkdir", "-p", fix.path])
            commands.append(["chown", "-R", fix.owner, fix.path])
            for command in commands:
                try:
                    self.runner.exec(fix.service, command, user="root")
                except RuntimeCommandError as e:
                    message = f"Could not fix {fix.path} in {fix.service}: {e}"
                    logger.warning("%s", message)
                    warnings.append(message)
                    break
        return warnings
