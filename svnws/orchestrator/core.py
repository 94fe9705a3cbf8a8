"""
Command orchestration for the workspace lifecycle.

Each verb checks lifecycle preconditions against the state store first,
then drives the backend, and writes the store once at the end. A failed
backend step leaves the store untouched. The single exception is hard
delete: when the working copy is already gone but the backend deletion
fails, the project is recorded as orphaned.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..backend.base import LogEntry, VersionControlBackend
from ..config import Config, Repository
from ..errors import (
    AlreadyActive, AlreadyExists, BackendError, BranchInUse, Conflict,
    InvalidReference, NotActive, NotFound, Orphaned, WorkingCopyMissing
)
from ..layout import TRUNK, LayoutResolver, parse_revision, validate_branch_name, validate_project_name
from ..platform import remove_directory_tree
from ..state import EntryKey, ProjectState, WorkspaceEntry, WorkspaceStateStore, check_restorable
from .results import CommandResult, create_command_result

COMMIT_PREFIX = "[svnws]"


def _entry_dict(entry: WorkspaceEntry, current: Optional[str] = None) -> Dict[str, Any]:
    data = {"project": entry.project, **entry.to_dict()}
    if current is not None:
        data["current"] = entry.project == current
    return data


def _is_obstructed(path: Path) -> bool:
    return path.exists() and (not path.is_dir() or any(path.iterdir()))


class WorkspaceOrchestrator:
    """Runs workspace verbs for one repository."""

    def __init__(
        self,
        repository: Repository,
        store: WorkspaceStateStore,
        backend: VersionControlBackend,
        config: Config
    ):
        self.repository = repository
        self.store = store
        self.backend = backend
        self.config = config
        self.resolver = LayoutResolver(repository, config.workspace_root)
        self.logger = logging.getLogger('svnws.orchestrator')
        self._repository_checked = False

    # Helpers

    def _key(self, project: str) -> EntryKey:
        return EntryKey(self.repository.name, project)

    def _project(self, project: Optional[str]) -> str:
        """Validate ``project``, defaulting to the repository's current project."""
        if project is None:
            project = self.store.get_current(self.repository.name)
            if project is None:
                raise InvalidReference(
                    "No project given and no current project is set",
                    context={"repository": self.repository.name}
                )
        return validate_project_name(project)

    @contextmanager
    def _backend_errors(self, command: str, project: Optional[str] = None, branch: Optional[str] = None):
        """Attach command context to backend errors on their way out."""
        try:
            yield
        except BackendError as e:
            e.add_context(
                repository=self.repository.name,
                project=project,
                branch=branch,
                command=command
            )
            self.logger.debug(f"Backend step failed: {e}", extra={'operation': command})
            raise

    def _ensure_repository(self) -> None:
        """Create the local ``file://`` repository on first use when allowed."""
        if self._repository_checked:
            return
        repository = self.repository
        if repository.is_local and not repository.local_path.exists():
            if not self.config.auto_create_repository:
                raise NotFound(
                    f"Local repository {repository.local_path} does not exist",
                    operation="open_repository",
                    context={"repository": repository.name}
                )
            self.logger.info(
                f"Creating local repository {repository.local_path}",
                extra={'operation': 'create_repository'}
            )
            with self._backend_errors("create_repository"):
                self.backend.create_repository(repository.local_path)
        self._repository_checked = True

    def _require_active(self, project: str, command: str, check_path: bool = True) -> WorkspaceEntry:
        entry = self.store.get(self._key(project))
        if entry is None or not entry.is_active:
            raise NotActive(
                f"Project '{project}' is not checked out",
                context={"project": project, "command": command}
            )
        if check_path and not entry.path.exists():
            raise WorkingCopyMissing(
                f"Working copy of '{project}' is missing at {entry.path}. "
                f"Run 'uncheckout {project}' and then 'checkout {project}'",
                context={"project": project, "path": str(entry.path), "command": command}
            )
        return entry

    def _require_clean(self, entry: WorkspaceEntry, command: str) -> None:
        with self._backend_errors(command, entry.project, entry.branch):
            dirty = self.backend.has_local_modifications(entry.path)
        if dirty:
            raise Conflict(
                f"Working copy of '{entry.project}' has local modifications. "
                f"Commit or revert them first",
                operation=command,
                context={"project": entry.project, "branch": entry.branch, "path": str(entry.path)}
            )

    def _require_url(self, url: str, command: str, project: str, branch: Optional[str] = None) -> None:
        with self._backend_errors(command, project, branch):
            found = self.backend.exists(url)
        if not found:
            what = f"Branch '{branch}' of project '{project}'" if branch else f"Project '{project}'"
            raise NotFound(
                f"{what} does not exist in repository '{self.repository.name}'",
                operation=command,
                context={"project": project, "branch": branch, "url": url, "command": command}
            )

    def _require_unobstructed(self, path: Path, project: str, command: str) -> None:
        if _is_obstructed(path):
            raise Conflict(
                f"Target path {path} already exists and is not empty",
                operation=command,
                context={"project": project, "path": str(path)}
            )

    def _checkout_into(self, url: str, path: Path, command: str, project: str, branch: str):
        """Check out ``url``, removing a directory the failed attempt left behind."""
        existed = path.exists()
        try:
            with self._backend_errors(command, project, branch):
                return self.backend.checkout(url, path)
        except BackendError:
            if not existed and path.exists():
                self.logger.info(f"Removing partial working copy {path}", extra={'operation': command})
                remove_directory_tree(path)
            raise

    def _message(self, action: str) -> str:
        return f"{COMMIT_PREFIX} {action}"

    # Lifecycle verbs

    def new(self, project: str) -> CommandResult:
        """Create a project with the standard layout and check out its trunk."""
        project = validate_project_name(project)
        key = self._key(project)
        entry = self.store.get(key)
        if entry is not None and entry.is_active:
            raise AlreadyActive(f"Project '{project}' is already checked out", context={"project": project})

        location = self.resolver.resolve(project, TRUNK)
        self._require_unobstructed(location.path, project, "new")
        self._ensure_repository()

        with self._backend_errors("new", project, TRUNK):
            if self.backend.exists(self.resolver.project_url(project)):
                raise AlreadyExists(
                    f"Project '{project}' already exists in repository '{self.repository.name}'",
                    context={"project": project}
                )
            self.backend.make_directories(
                [self.resolver.trunk_url(project), self.resolver.branches_url(project), self.resolver.tags_url(project)],
                self._message(f"Create project {project}")
            )
        result = self._checkout_into(location.url, location.path, "new", project, TRUNK)

        make_current = self.store.get_current(self.repository.name) is None
        self.store.put(key, WorkspaceEntry(key=key, path=location.path, branch=TRUNK), make_current=make_current)
        self.logger.info(f"Created project {project}", extra={'operation': 'new'})
        return create_command_result(
            f"Created project '{project}' and checked out trunk to {location.path}",
            "new", project, TRUNK, result.revision, path=str(location.path)
        )

    def checkout(self, project: str, branch: str = TRUNK) -> CommandResult:
        project = validate_project_name(project)
        branch = validate_branch_name(branch)
        key = self._key(project)
        entry = self.store.get(key)
        if entry is not None and entry.is_active:
            raise AlreadyActive(f"Project '{project}' is already checked out", context={"project": project})

        location = self.resolver.resolve(project, branch)
        self._ensure_repository()
        self._require_url(self.resolver.project_url(project), "checkout", project)
        if branch != TRUNK:
            self._require_url(location.url, "checkout", project, branch)
        self._require_unobstructed(location.path, project, "checkout")

        result = self._checkout_into(location.url, location.path, "checkout", project, branch)
        self.store.put(key, WorkspaceEntry(key=key, path=location.path, branch=branch), make_current=True)
        self.logger.info(f"Checked out {project}@{branch}", extra={'operation': 'checkout'})
        return create_command_result(
            f"Checked out '{project}' ({branch}) to {location.path}",
            "checkout", project, branch, result.revision, path=str(location.path)
        )

    def uncheckout(self, project: Optional[str] = None, discard_changes: bool = False) -> CommandResult:
        """Remove the working copy and forget the project locally."""
        project = self._project(project)
        entry = self._require_active(project, "uncheckout", check_path=False)
        if entry.path.exists() and not discard_changes:
            self._require_clean(entry, "uncheckout")

        with self._backend_errors("uncheckout", project, entry.branch):
            self.backend.remove_working_copy(entry.path)
        self.store.remove(entry.key)
        self.logger.info(f"Unchecked out {project}", extra={'operation': 'uncheckout'})
        return create_command_result(f"Removed working copy of '{project}'", "uncheckout", project, entry.branch)

    def switch(self, branch: Optional[str] = None, project: Optional[str] = None) -> CommandResult:
        """
        Move a project to ``branch``, checking it out first when it is not local.

        Without a branch, a recorded project stays on its recorded branch (a
        soft-deleted one is checked out again on it) and any other project is
        checked out on trunk.
        """
        project = self._project(project)
        key = self._key(project)
        entry = self.store.get(key)
        if branch is None:
            branch = entry.branch if entry is not None else TRUNK
        branch = validate_branch_name(branch)
        location = self.resolver.resolve(project, branch)

        if entry is not None and entry.is_active:
            entry = self._require_active(project, "switch")
            if entry.branch == branch:
                if self.store.get_current(self.repository.name) != project:
                    self.store.set_current(self.repository.name, project)
                return create_command_result(
                    f"'{project}' is already on {branch}", "switch", project, branch, changed=False
                )

            self._require_clean(entry, "switch")
            self._ensure_repository()
            self._require_url(location.url, "switch", project, branch)
            with self._backend_errors("switch", project, branch):
                result = self.backend.switch_working_copy(entry.path, location.url)
            self.store.put(key, entry.with_branch(branch), make_current=True)
            self.logger.info(f"Switched {project} from {entry.branch} to {branch}", extra={'operation': 'switch'})
            return create_command_result(
                f"Switched '{project}' from {entry.branch} to {branch}",
                "switch", project, branch, result.revision, changed=True, previous_branch=entry.branch
            )

        self._ensure_repository()
        self._require_url(self.resolver.project_url(project), "switch", project)
        self._require_url(location.url, "switch", project, branch)
        self._require_unobstructed(location.path, project, "switch")
        result = self._checkout_into(location.url, location.path, "switch", project, branch)
        self.store.put(key, WorkspaceEntry(key=key, path=location.path, branch=branch), make_current=True)
        self.logger.info(f"Checked out {project}@{branch} on switch", extra={'operation': 'switch'})
        return create_command_result(
            f"Checked out '{project}' ({branch}) to {location.path}",
            "switch", project, branch, result.revision, changed=True, path=str(location.path)
        )

    def delete(self, project: Optional[str] = None, force: bool = False, discard_changes: bool = False) -> CommandResult:
        """
        Soft delete removes only the working copy and keeps the entry for
        ``restore``. With ``force`` the project tree is deleted at the backend
        and the entry purged.
        """
        project = self._project(project)
        if force:
            return self._hard_delete(project)

        entry = self._require_active(project, "delete", check_path=False)
        if entry.path.exists() and not discard_changes:
            self._require_clean(entry, "delete")

        with self._backend_errors("delete", project, entry.branch):
            self.backend.remove_working_copy(entry.path)
        self.store.mark_soft_deleted(entry.key)
        self.logger.info(f"Soft-deleted {project}", extra={'operation': 'delete'})
        return create_command_result(
            f"Deleted working copy of '{project}'; run 'restore {project}' to bring it back",
            "delete", project, entry.branch, hard=False
        )

    def _hard_delete(self, project: str) -> CommandResult:
        key = self._key(project)
        entry = self.store.get(key)
        if entry is None:
            raise NotActive(f"Project '{project}' is not recorded in this workspace", context={"project": project})

        self._ensure_repository()
        with self._backend_errors("delete", project, entry.branch):
            self.backend.remove_working_copy(entry.path)

        project_url = self.resolver.project_url(project)
        try:
            with self._backend_errors("delete", project, entry.branch):
                result = self.backend.delete_branch(project_url, self._message(f"Delete project {project}"))
        except NotFound:
            self.logger.warning(
                f"Project {project} was already gone from the repository",
                extra={'operation': 'delete'}
            )
            result = None
        except BackendError as e:
            self.store.mark_orphaned(key)
            self.logger.error(
                f"Project {project} orphaned: working copy removed but repository deletion failed",
                extra={'operation': 'delete'}
            )
            raise Orphaned(
                f"Removed the working copy of '{project}' but could not delete it from the repository: {e.message}",
                cause=e,
                context={"project": project, "repository": self.repository.name, "url": project_url,
                         "operation": "delete"}
            ) from e

        self.store.mark_hard_deleted(key)
        self.logger.info(f"Hard-deleted {project}", extra={'operation': 'delete'})
        return create_command_result(
            f"Deleted project '{project}' from the workspace and the repository",
            "delete", project, entry.branch, result.revision if result else None, hard=True
        )

    def restore(self, project: Optional[str] = None) -> CommandResult:
        """Recreate a soft-deleted working copy at its recorded path and branch."""
        project = self._project(project)
        key = self._key(project)
        entry = self.store.get(key)
        check_restorable(key, entry)

        url = self.resolver.branch_url(project, entry.branch)
        self._ensure_repository()
        self._require_url(url, "restore", project, entry.branch)
        self._require_unobstructed(entry.path, project, "restore")

        result = self._checkout_into(url, entry.path, "restore", project, entry.branch)
        restored = self.store.restore(key)
        self.logger.info(f"Restored {project}", extra={'operation': 'restore'})
        return create_command_result(
            f"Restored '{project}' ({restored.branch}) to {restored.path}",
            "restore", project, restored.branch, result.revision, path=str(restored.path)
        )

    # Working copy verbs

    def pull(self, project: Optional[str] = None, branch: Optional[str] = None) -> CommandResult:
        """Update the working copy, switching to ``branch`` first if given."""
        project = self._project(project)
        entry = self._require_active(project, "pull")
        if branch is not None and validate_branch_name(branch) != entry.branch:
            self.switch(branch, project)
            entry = self._require_active(project, "pull")

        with self._backend_errors("pull", project, entry.branch):
            result = self.backend.update(entry.path)
        return create_command_result(
            f"'{project}' ({entry.branch}) is at revision {result.revision}",
            "pull", project, entry.branch, result.revision
        )

    def push(self, message: str, project: Optional[str] = None) -> CommandResult:
        """Commit every local change of the project."""
        if not message or not message.strip():
            raise InvalidReference("Commit message cannot be empty", context={"command": "push"})
        project = self._project(project)
        entry = self._require_active(project, "push")

        with self._backend_errors("push", project, entry.branch):
            result = self.backend.commit(entry.path, message)
        if result.revision is None:
            return create_command_result("Nothing to commit", "push", project, entry.branch, committed=False)

        self.logger.info(f"Committed r{result.revision} on {project}@{entry.branch}", extra={'operation': 'push'})
        return create_command_result(
            f"Committed revision {result.revision}", "push", project, entry.branch, result.revision, committed=True
        )

    commit = push

    def revert(self, project: Optional[str] = None) -> CommandResult:
        project = self._project(project)
        entry = self._require_active(project, "revert")
        with self._backend_errors("revert", project, entry.branch):
            self.backend.revert_local(entry.path)
        return create_command_result(f"Reverted local modifications in '{project}'", "revert", project, entry.branch)

    # Branch verbs

    def _recorded_or_remote(self, project: str, command: str) -> Optional[WorkspaceEntry]:
        entry = self.store.get(self._key(project))
        self._ensure_repository()
        if entry is None:
            self._require_url(self.resolver.project_url(project), command, project)
        return entry

    def branch_create(self, name: str, project: Optional[str] = None, source: Optional[str] = None) -> CommandResult:
        """Copy ``source`` (the checked-out branch by default) to a new branch."""
        name = validate_branch_name(name)
        if name == TRUNK:
            raise InvalidReference("Cannot create a branch named trunk", context={"branch": name})
        project = self._project(project)
        entry = self._recorded_or_remote(project, "branch")
        source = validate_branch_name(source or (entry.branch if entry is not None else TRUNK))

        source_url = self.resolver.branch_url(project, source)
        dest_url = self.resolver.branch_url(project, name)
        self._require_url(source_url, "branch", project, source)
        with self._backend_errors("branch", project, name):
            if self.backend.exists(dest_url):
                raise AlreadyExists(
                    f"Branch '{name}' already exists in project '{project}'",
                    context={"project": project, "branch": name}
                )
            result = self.backend.create_branch(
                source_url, dest_url, self._message(f"Create branch {name} from {source}")
            )
        self.logger.info(f"Created branch {project}@{name} from {source}", extra={'operation': 'branch'})
        return create_command_result(
            f"Created branch '{name}' from {source}", "branch", project, name, result.revision, source=source
        )

    def branch_delete(self, name: str, project: Optional[str] = None) -> CommandResult:
        name = validate_branch_name(name)
        if name == TRUNK:
            raise InvalidReference("Trunk cannot be deleted", context={"branch": name})
        project = self._project(project)
        entry = self.store.get(self._key(project))
        if entry is not None and entry.is_active and entry.branch == name:
            raise BranchInUse(
                f"Branch '{name}' is checked out in the working copy of '{project}'",
                context={"project": project, "branch": name}
            )

        self._recorded_or_remote(project, "branch")
        url = self.resolver.branch_url(project, name)
        self._require_url(url, "branch", project, name)
        with self._backend_errors("branch", project, name):
            result = self.backend.delete_branch(url, self._message(f"Delete branch {name}"))
        self.logger.info(f"Deleted branch {project}@{name}", extra={'operation': 'branch'})
        return create_command_result(f"Deleted branch '{name}'", "branch", project, name, result.revision)

    def branch_restore(self, name: str, project: Optional[str] = None) -> CommandResult:
        """Recreate a deleted branch from the last revision before it was deleted."""
        name = validate_branch_name(name)
        if name == TRUNK:
            raise InvalidReference("Trunk cannot be restored", context={"branch": name})
        project = self._project(project)
        self._recorded_or_remote(project, "branch")
        url = self.resolver.branch_url(project, name)
        deleted_path = f"/{project}/branches/{name}"

        with self._backend_errors("branch", project, name):
            if self.backend.exists(url):
                raise AlreadyExists(
                    f"Branch '{name}' already exists in project '{project}'",
                    context={"project": project, "branch": name}
                )
            deleted_in = None
            for log_entry in self.backend.log(self.resolver.branches_url(project)):
                if any(p.action == "D" and p.path.rstrip("/").endswith(deleted_path) for p in log_entry.changed_paths):
                    deleted_in = log_entry.revision
                    break
            if deleted_in is None:
                raise NotFound(
                    f"No deletion of branch '{name}' found in the history of '{project}'",
                    operation="branch",
                    context={"project": project, "branch": name, "url": url}
                )
            source_revision = deleted_in - 1
            result = self.backend.create_branch(
                url, url, self._message(f"Restore branch {name} from r{source_revision}"),
                source_revision=source_revision
            )
        self.logger.info(f"Restored branch {project}@{name} from r{source_revision}", extra={'operation': 'branch'})
        return create_command_result(
            f"Restored branch '{name}' from revision {source_revision}",
            "branch", project, name, result.revision, restored_from=source_revision
        )

    def branches(self, project: Optional[str] = None) -> CommandResult:
        """List trunk and every branch, marking the checked-out one."""
        project = self._project(project)
        entry = self._recorded_or_remote(project, "branches")
        with self._backend_errors("branches", project):
            names = self.backend.list_directory(self.resolver.branches_url(project))

        checked_out = entry.branch if entry is not None and entry.is_active else None
        branches = [
            {"name": name, "current": name == checked_out}
            for name in [TRUNK] + sorted(names)
        ]
        return create_command_result(
            f"{len(branches)} branches in '{project}'", "branches", project, checked_out, branches=branches
        )

    # Read-only verbs

    def _branch_url(self, entry: WorkspaceEntry) -> str:
        return self.resolver.branch_url(entry.project, entry.branch)

    def review(self, revision: Optional[str] = None, project: Optional[str] = None) -> CommandResult:
        """Show the log message and diff of one revision on the checked-out branch."""
        project = self._project(project)
        entry = self._require_active(project, "review")
        parsed = parse_revision(revision) if revision is not None else "HEAD"
        url = self._branch_url(entry)

        with self._backend_errors("review", project, entry.branch):
            if isinstance(parsed, int):
                entries = self.backend.log(url, revision_range=str(parsed), limit=1)
            elif parsed == "HEAD":
                entries = self.backend.log(url, limit=1)
            else:
                entries = self.backend.log(entry.path, revision_range=parsed, limit=1)
            if not entries:
                raise NotFound(
                    f"Revision {revision or 'HEAD'} not found on {entry.branch} of '{project}'",
                    operation="review",
                    context={"project": project, "branch": entry.branch, "revision": revision}
                )
            log_entry = entries[0]
            diff = self.backend.diff_revision(entry.path, log_entry.revision)

        return create_command_result(
            f"r{log_entry.revision} by {log_entry.author}: {log_entry.message}",
            "review", project, entry.branch, log_entry.revision,
            entry=log_entry.to_dict(), diff=diff.diff
        )

    def log(self, project: Optional[str] = None, limit: Optional[int] = None, all_history: bool = False) -> CommandResult:
        """History of the checked-out branch, stopping at its creation unless ``all_history``."""
        if limit is not None and limit <= 0:
            raise InvalidReference(f"Invalid log limit: {limit}", context={"limit": limit})
        project = self._project(project)
        entry = self._require_active(project, "log")
        with self._backend_errors("log", project, entry.branch):
            entries: List[LogEntry] = self.backend.log(
                self._branch_url(entry), limit=limit, stop_on_copy=not all_history
            )
        return create_command_result(
            f"{len(entries)} log entries for '{project}' ({entry.branch})",
            "log", project, entry.branch, entries=[e.to_dict() for e in entries]
        )

    def list(self, remote: bool = False) -> CommandResult:
        """Recorded projects, and optionally the projects present at the backend."""
        current = self.store.get_current(self.repository.name)
        entries = [_entry_dict(e, current) for e in self.store.list_entries(self.repository.name)]
        data: Dict[str, Any] = {"repository": self.repository.name, "current": current, "entries": entries}

        if remote:
            self._ensure_repository()
            with self._backend_errors("list"):
                data["remote_projects"] = sorted(self.backend.list_directory(self.resolver.root_url))

        return create_command_result(
            f"{len(entries)} projects recorded in '{self.repository.name}'", "list", **data
        )

    def status(self, project: Optional[str] = None) -> CommandResult:
        """
        Compare recorded entries against the disk and the backend.

        Without a project argument and no current project, every entry of
        the repository is reported.
        """
        if project is None and self.store.get_current(self.repository.name) is None:
            reports = [self._status_of(e) for e in self.store.list_entries(self.repository.name)]
            drifted = sum(1 for r in reports if r["drift"])
            return create_command_result(
                f"{len(reports)} projects, {drifted} with drift", "status", projects=reports
            )

        project = self._project(project)
        entry = self.store.get(self._key(project))
        if entry is None:
            raise NotActive(f"Project '{project}' is not recorded in this workspace", context={"project": project})
        report = self._status_of(entry)
        message = "; ".join(report["drift"]) if report["drift"] else f"'{project}' matches the recorded state"
        return CommandResult(True, message, "status", project, entry.branch, data=report)

    def _status_of(self, entry: WorkspaceEntry) -> Dict[str, Any]:
        report: Dict[str, Any] = {
            "project": entry.project,
            "state": entry.state.value,
            "branch": entry.branch,
            "path": str(entry.path),
            "path_exists": entry.path.exists(),
            "drift": [],
        }

        if entry.state is ProjectState.ORPHANED:
            report["drift"].append("project is orphaned; re-run 'delete --force' or check it out again")
        if not entry.is_active:
            if report["path_exists"]:
                report["drift"].append(f"{entry.state.value} project still has files at {entry.path}")
            return report

        if not report["path_exists"]:
            report["drift"].append(f"working copy missing at {entry.path}")
            return report

        with self._backend_errors("status", entry.project, entry.branch):
            url = self.backend.working_copy_url(entry.path)
            report["modified"] = self.backend.has_local_modifications(entry.path)
        actual = self.resolver.ref_from_url(entry.project, url)
        report["url"] = url
        report["actual_branch"] = actual
        if actual != entry.branch:
            report["drift"].append(
                f"working copy is on {actual or url} but recorded on {entry.branch}"
            )
        return report
