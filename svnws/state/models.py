"""Workspace entry data model."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict


class ProjectState(Enum):
    """Lifecycle states a recorded project can be in."""
    ACTIVE = "active"                 # Working copy on disk
    SOFT_DELETED = "soft-deleted"     # Working copy removed, restorable
    ORPHANED = "orphaned"             # Working copy removed, backend delete failed


@dataclass(frozen=True)
class EntryKey:
    """Identifies a project within a repository."""
    repository: str
    project: str

    def __str__(self) -> str:
        return f"{self.repository}/{self.project}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class WorkspaceEntry:
    """
    Recorded state of one project.

    A soft-deleted or orphaned entry keeps the last path and branch so the
    working copy can be recreated at the same place.
    """
    key: EntryKey
    path: Path
    branch: str
    state: ProjectState = ProjectState.ACTIVE
    updated_at: str = field(default_factory=_now)

    @property
    def repository(self) -> str:
        return self.key.repository

    @property
    def project(self) -> str:
        return self.key.project

    @property
    def is_active(self) -> bool:
        return self.state is ProjectState.ACTIVE

    def with_state(self, state: ProjectState) -> "WorkspaceEntry":
        return replace(self, state=state, updated_at=_now())

    def with_branch(self, branch: str) -> "WorkspaceEntry":
        return replace(self, branch=branch, updated_at=_now())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted per-project record."""
        return {
            "path": str(self.path),
            "branch": self.branch,
            "state": self.state.value,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, key: EntryKey, data: Dict[str, Any]) -> "WorkspaceEntry":
        return cls(
            key=key,
            path=Path(data["path"]),
            branch=data["branch"],
            state=ProjectState(data["state"]),
            updated_at=data.get("updated_at") or _now(),
        )
