"""Version-control backends for svnws."""

from ..config import Config
from .base import (
    ChangedPath, LogEntry, OperationResult, RevisionDiff, VersionControlBackend
)
from .memory import InMemoryBackend
from .svn import SvnBackend


def create_backend(config: Config) -> VersionControlBackend:
    """Backend used by the command line and the MCP server."""
    return SvnBackend(config)


__all__ = [
    'ChangedPath',
    'LogEntry',
    'OperationResult',
    'RevisionDiff',
    'VersionControlBackend',
    'InMemoryBackend',
    'SvnBackend',
    'create_backend',
]
