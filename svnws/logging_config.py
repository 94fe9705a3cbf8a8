"""Logging setup shared by the command line and the MCP server."""

import logging
from typing import Optional

from .config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

COMPONENT_LOGGERS = [
    'svnws.init',
    'svnws.config',
    'svnws.orchestrator',
    'svnws.state',
    'svnws.backend',
    'svnws.file_lock',
    'svnws.error_handler',
    'svnws.performance',
]


class StructuredFormatter(logging.Formatter):
    """Prefixes the message with ``[operation]`` when one was passed in ``extra``."""

    def format(self, record):
        operation = getattr(record, 'operation', None)
        if operation:
            formatted = super().format(record)
            message = record.getMessage()
            return formatted.replace(message, f"[{operation}] {message}", 1)
        return super().format(record)


def setup_logging(config: Config, level: Optional[str] = None) -> None:
    """
    Configure the svnws component loggers.

    Handlers write to stderr, which keeps stdout free for command output
    and for the MCP stdio transport.
    """
    log_level = getattr(logging, (level or config.log_level).upper())
    formatter = StructuredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    for logger_name in COMPONENT_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(log_level)

        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.propagate = False
        else:
            for handler in logger.handlers:
                handler.setFormatter(formatter)
