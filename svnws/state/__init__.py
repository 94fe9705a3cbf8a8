"""Workspace state: entries and their persistent store."""

from .models import EntryKey, ProjectState, WorkspaceEntry
from .store import STATE_VERSION, WorkspaceStateStore, check_restorable

__all__ = [
    'EntryKey',
    'ProjectState',
    'WorkspaceEntry',
    'WorkspaceStateStore',
    'STATE_VERSION',
    'check_restorable',
]
