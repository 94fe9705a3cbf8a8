"""Abstract version-control backend and the values it returns."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union


@dataclass
class OperationResult:
    """Result of a single backend operation."""
    success: bool
    message: str
    operation: str
    revision: Optional[int] = None
    output: str = ""


@dataclass
class ChangedPath:
    """One path touched by a revision, as reported by ``svn log -v``."""
    action: str
    path: str
    kind: str = ""
    copy_from_path: Optional[str] = None
    copy_from_revision: Optional[int] = None


@dataclass
class LogEntry:
    revision: int
    author: str
    date: str
    message: str
    changed_paths: List[ChangedPath] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RevisionDiff:
    """Textual diff of the changes a single revision introduced."""
    revision: int
    diff: str


LogTarget = Union[str, Path]


class VersionControlBackend(ABC):
    """
    Capability the orchestrator needs from a version-control system.

    Implementations raise ``NotFound``, ``Conflict``, ``BackendUnavailable``
    or a plain ``BackendError`` on failure, and never retry.
    """

    @abstractmethod
    def checkout(self, url: str, path: Path) -> OperationResult:
        """Create a working copy of ``url`` at ``path``."""

    @abstractmethod
    def update(self, path: Path) -> OperationResult:
        """Bring the working copy at ``path`` up to the latest revision."""

    @abstractmethod
    def commit(self, path: Path, message: str) -> OperationResult:
        """
        Commit all local changes under ``path``.

        Unversioned files are added and missing files deleted first. The
        result's revision is None when there was nothing to commit.
        """

    @abstractmethod
    def log(
        self,
        target: LogTarget,
        revision_range: Optional[str] = None,
        limit: Optional[int] = None,
        stop_on_copy: bool = False
    ) -> List[LogEntry]:
        """History of ``target`` (URL or working copy), newest first."""

    @abstractmethod
    def diff_revision(self, path: LogTarget, revision: int) -> RevisionDiff:
        """Changes introduced by ``revision`` under ``path``."""

    @abstractmethod
    def revert_local(self, path: Path) -> OperationResult:
        """Discard local modifications in the working copy."""

    @abstractmethod
    def switch_working_copy(self, path: Path, new_url: str) -> OperationResult:
        """Point the working copy at ``new_url`` in place."""

    @abstractmethod
    def create_branch(
        self,
        source_url: str,
        dest_url: str,
        message: str,
        source_revision: Optional[int] = None
    ) -> OperationResult:
        """Server-side copy of ``source_url`` (at ``source_revision`` when given) to ``dest_url``."""

    @abstractmethod
    def delete_branch(self, url: str, message: str) -> OperationResult:
        """Server-side delete of ``url`` and everything below it."""

    @abstractmethod
    def remove_working_copy(self, path: Path) -> OperationResult:
        """Remove a working copy from disk. A missing path is a no-op."""

    @abstractmethod
    def exists(self, url: str) -> bool:
        """Whether ``url`` exists at the backend."""

    @abstractmethod
    def make_directories(self, urls: Sequence[str], message: str) -> OperationResult:
        """Create directories (and missing parents) in one revision."""

    @abstractmethod
    def list_directory(self, url: str) -> List[str]:
        """Names of the child directories of ``url``."""

    @abstractmethod
    def has_local_modifications(self, path: Path) -> bool:
        """True if the working copy has changes, including unversioned files."""

    @abstractmethod
    def working_copy_url(self, path: Path) -> str:
        """URL the working copy at ``path`` is checked out from."""

    @abstractmethod
    def create_repository(self, path: Path) -> OperationResult:
        """Create a new local repository at ``path``."""
