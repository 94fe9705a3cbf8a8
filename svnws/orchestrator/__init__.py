"""Command orchestration for svnws."""

from typing import Optional

from ..backend import VersionControlBackend, create_backend
from ..config import Config
from ..state import WorkspaceStateStore
from .core import WorkspaceOrchestrator
from .results import CommandResult, create_command_result


def build_orchestrator(
    config: Config,
    repository_name: Optional[str] = None,
    backend: Optional[VersionControlBackend] = None,
    store: Optional[WorkspaceStateStore] = None
) -> WorkspaceOrchestrator:
    """Wire an orchestrator for one configured repository."""
    return WorkspaceOrchestrator(
        repository=config.get_repository(repository_name),
        store=store or WorkspaceStateStore.from_config(config),
        backend=backend or create_backend(config),
        config=config
    )


__all__ = [
    'WorkspaceOrchestrator',
    'CommandResult',
    'create_command_result',
    'build_orchestrator',
]
