"""
Logging configuration for the command line.
"""
import logging

import click

LOG_FORMAT = "%(levelname)s: %(message)s"

_LEVEL_COLORS = {
    logging.DEBUG: "blue",
    logging.INFO: None,
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


class ClickFormatter(logging.Formatter):
    """
    Formats records as 'LEVEL: message' with the level coloured through click.
    Colours are dropped by click.echo when the output is not a terminal.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno)
        if color:
            return click.style(message, fg=color)
        return message


class ClickHandler(logging.Handler):
    """
    Emits log records through click.echo so they interleave with command output.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=record.levelno >= logging.WARNING)
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Setup logging configuration

    Args:
        verbose: Enable debug output, including every runtime command
        quiet: Only show warnings and errors
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = ClickHandler()
    handler.setFormatter(ClickFormatter(LOG_FORMAT))

    root = logging.getLogger("stackup")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False
