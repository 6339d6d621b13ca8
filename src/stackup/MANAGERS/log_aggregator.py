"""
Log retrieval for services, through the container runtime.
"""
import logging
from typing import Iterable, Optional

from ..RUNNERS.compose_runner import ComposeRunner

logger = logging.getLogger(__name__)

class LogAggregator:
    """
    Collects recent log lines from services. Read-only.
    """
    def __init__(self, runner: ComposeRunner):
        """
        Initializes the log aggregator.

        :param runner: Compose runner for the stack.
        """
        self.runner = runner

    def tail(self, services: Optional[Iterable[str]] = None, lines: int = 100) -> str:
        """
        Returns the last lines of the given services' logs, or of all services.

        :param services: Service names; all services when empty or None.
        :param lines: Lines per service.
        :return: The combined log text.
        """
        services = list(services or [])
        if not services:
            return self.runner.logs(tail=lines)
        return "".join(self.runner.logs(service=name, tail=lines) for name in services)

    def show(self, service: Optional[str] = None, lines: Optional[int] = 100, follow: bool = False):
        """
        Prints logs straight to the terminal, optionally following them.

        :param service: Service name; all services when None.
        :param lines: Lines per service; None for the whole log.
        :param follow: Keep streaming until interrupted.
        """
        target = f"service {service}" if service else "all services"
        if lines is None:
            logger.info("Displaying all log lines for %s.", target)
        else:
            logger.info("Displaying last %d log lines for %s.", lines, target)
        self.runner.logs(service=service, tail=lines, follow=follow, capture=False)
