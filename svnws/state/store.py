"""
Persistent workspace state store.

The whole workspace is a single JSON document::

    {"version": 1,
     "repositories": {
       "<repo>": {"current": "<project>" | null,
                  "projects": {"<project>": {"path", "branch", "state", "updated_at"}}}}}

Every mutation re-reads the document under the state-file lock, applies the
change and writes it back atomically (temp file, fsync, ``os.replace``).
The previous document is kept as ``state.json.bak``.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..config import Config
from ..errors import AlreadyActive, NotActive, NotRestorable, StateStoreError
from ..file_lock import FileLock, state_lock_for
from ..platform import create_secure_temp_file, is_windows
from .models import EntryKey, ProjectState, WorkspaceEntry

STATE_VERSION = 1

Document = Dict[str, Any]


def _empty_document() -> Document:
    return {"version": STATE_VERSION, "repositories": {}}


class WorkspaceStateStore:
    """Owns every workspace entry. Only the orchestrator writes through it."""

    def __init__(self, state_file: Path, lock: FileLock):
        self.state_file = Path(state_file)
        self.backup_file = self.state_file.with_name(self.state_file.name + ".bak")
        self.lock = lock
        self.logger = logging.getLogger('svnws.state.store')

    @classmethod
    def from_config(cls, config: Config) -> "WorkspaceStateStore":
        return cls(config.state_file, state_lock_for(config))

    # Reading

    def _load(self) -> Document:
        if not self.state_file.exists():
            return _empty_document()

        try:
            document = json.loads(self.state_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise self._corrupt(f"cannot be parsed: {e}") from e
        except OSError as e:
            raise StateStoreError(
                f"Cannot read workspace state {self.state_file}: {e}",
                context={"state_file": str(self.state_file)}
            ) from e

        if not isinstance(document, dict) or not isinstance(document.get("repositories"), dict):
            raise self._corrupt("has an unexpected structure")
        if document.get("version") != STATE_VERSION:
            raise self._corrupt(f"has unsupported version {document.get('version')!r}")
        return document

    def _corrupt(self, reason: str) -> StateStoreError:
        message = f"Workspace state {self.state_file} {reason}."
        if self.backup_file.exists():
            message += f" The previous state is kept at {self.backup_file}."
        return StateStoreError(
            message,
            context={"state_file": str(self.state_file), "backup_file": str(self.backup_file)}
        )

    @staticmethod
    def _section(document: Document, repository: str, create: bool = False) -> Optional[Dict[str, Any]]:
        repositories = document["repositories"]
        if repository not in repositories:
            if not create:
                return None
            repositories[repository] = {"current": None, "projects": {}}
        return repositories[repository]

    def _entry_from(self, document: Document, key: EntryKey) -> Optional[WorkspaceEntry]:
        section = self._section(document, key.repository)
        if section is None or key.project not in section["projects"]:
            return None
        try:
            return WorkspaceEntry.from_dict(key, section["projects"][key.project])
        except (KeyError, ValueError, TypeError) as e:
            raise self._corrupt(f"has an invalid record for {key}: {e}") from e

    def get(self, key: EntryKey) -> Optional[WorkspaceEntry]:
        return self._entry_from(self._load(), key)

    def list_entries(self, repository: Optional[str] = None) -> List[WorkspaceEntry]:
        """Entries in insertion order, for one repository or for all of them."""
        document = self._load()
        names = [repository] if repository is not None else list(document["repositories"])
        entries = []
        for name in names:
            section = self._section(document, name)
            if section is None:
                continue
            for project in section["projects"]:
                entries.append(self._entry_from(document, EntryKey(name, project)))
        return entries

    def get_current(self, repository: str) -> Optional[str]:
        section = self._section(self._load(), repository)
        return section.get("current") if section else None

    # Writing

    def _write(self, document: Document) -> None:
        directory = self.state_file.parent
        fd, temp_path = create_secure_temp_file(directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())

            if self.state_file.exists():
                shutil.copy2(self.state_file, self.backup_file)
            os.replace(temp_path, self.state_file)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StateStoreError(
                f"Failed to write workspace state {self.state_file}: {e}",
                context={"state_file": str(self.state_file)}
            ) from e

        if not is_windows():
            dir_fd = os.open(directory, os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)

    def _mutate(self, operation: str, change: Callable[[Document], Any]) -> Any:
        """Apply ``change`` to a fresh copy of the document and persist it."""
        try:
            with self.lock:
                document = self._load()
                result = change(document)
                self._write(document)
        except TimeoutError as e:
            raise StateStoreError(
                f"Workspace state is locked by another svnws process: {e}",
                context={"state_file": str(self.state_file), "operation": operation}
            ) from e

        self.logger.debug("State updated", extra={'operation': operation})
        return result

    def put(self, key: EntryKey, entry: WorkspaceEntry, make_current: bool = False) -> WorkspaceEntry:
        """Insert or replace an entry. A replaced entry keeps its position."""
        def change(document: Document) -> WorkspaceEntry:
            section = self._section(document, key.repository, create=True)
            section["projects"][key.project] = entry.to_dict()
            if make_current:
                section["current"] = key.project
            return entry

        return self._mutate("put", change)

    def mark_soft_deleted(self, key: EntryKey) -> WorkspaceEntry:
        def change(document: Document) -> WorkspaceEntry:
            entry = self._entry_from(document, key)
            if entry is None or not entry.is_active:
                raise NotActive(f"Project '{key.project}' is not checked out", context={"project": key.project})
            updated = entry.with_state(ProjectState.SOFT_DELETED)
            section = self._section(document, key.repository)
            section["projects"][key.project] = updated.to_dict()
            self._clear_current(section, key.project)
            return updated

        return self._mutate("mark_soft_deleted", change)

    def mark_orphaned(self, key: EntryKey) -> WorkspaceEntry:
        def change(document: Document) -> WorkspaceEntry:
            entry = self._entry_from(document, key)
            if entry is None:
                raise NotActive(f"Project '{key.project}' is not recorded", context={"project": key.project})
            updated = entry.with_state(ProjectState.ORPHANED)
            section = self._section(document, key.repository)
            section["projects"][key.project] = updated.to_dict()
            self._clear_current(section, key.project)
            return updated

        return self._mutate("mark_orphaned", change)

    def mark_hard_deleted(self, key: EntryKey) -> None:
        """Purge the entry. A project that was never recorded is left alone."""
        def change(document: Document) -> None:
            section = self._section(document, key.repository)
            if section is not None:
                section["projects"].pop(key.project, None)
                self._clear_current(section, key.project)

        self._mutate("mark_hard_deleted", change)

    def remove(self, key: EntryKey) -> WorkspaceEntry:
        """Drop an active entry after its working copy was removed."""
        def change(document: Document) -> WorkspaceEntry:
            entry = self._entry_from(document, key)
            if entry is None or not entry.is_active:
                raise NotActive(f"Project '{key.project}' is not checked out", context={"project": key.project})
            section = self._section(document, key.repository)
            del section["projects"][key.project]
            self._clear_current(section, key.project)
            return entry

        return self._mutate("remove", change)

    def restore(self, key: EntryKey) -> WorkspaceEntry:
        """Mark a soft-deleted entry active again and make it current."""
        def change(document: Document) -> WorkspaceEntry:
            entry = self._entry_from(document, key)
            check_restorable(key, entry)
            updated = entry.with_state(ProjectState.ACTIVE)
            section = self._section(document, key.repository)
            section["projects"][key.project] = updated.to_dict()
            section["current"] = key.project
            return updated

        return self._mutate("restore", change)

    def set_current(self, repository: str, project: Optional[str]) -> None:
        def change(document: Document) -> None:
            if project is not None:
                entry = self._entry_from(document, EntryKey(repository, project))
                if entry is None or not entry.is_active:
                    raise NotActive(f"Project '{project}' is not checked out", context={"project": project})
            section = self._section(document, repository, create=True)
            section["current"] = project

        self._mutate("set_current", change)

    @staticmethod
    def _clear_current(section: Dict[str, Any], project: str) -> None:
        if section.get("current") == project:
            section["current"] = None


def check_restorable(key: EntryKey, entry: Optional[WorkspaceEntry]) -> None:
    """Raise unless ``entry`` is a soft-deleted project."""
    if entry is None:
        raise NotRestorable(
            f"Project '{key.project}' has no restorable record; it was never checked out or was deleted with --force",
            context={"project": key.project}
        )
    if entry.state is ProjectState.ACTIVE:
        raise AlreadyActive(f"Project '{key.project}' is already checked out", context={"project": key.project})
    if entry.state is ProjectState.ORPHANED:
        raise NotRestorable(
            f"Project '{key.project}' was hard-deleted and is orphaned; it cannot be restored",
            context={"project": key.project}
        )
