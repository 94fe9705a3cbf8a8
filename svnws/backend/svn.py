"""Subversion command-line backend."""

import logging
import os
import re
import subprocess
import time
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..config import Config
from ..errors import BackendError, BackendUnavailable, NotFound
from ..platform import remove_directory_tree
from .base import (
    ChangedPath, LogEntry, LogTarget, OperationResult, RevisionDiff, VersionControlBackend
)
from .error_patterns import classify_svn_error
from .performance_logger import PerformanceLogger, get_performance_logger

REVISION_PATTERN = re.compile(r"(?:Committed|Checked out|Updated to|At) revision (\d+)\.")

# wc-status items that do not count as a local change
CLEAN_ITEMS = {"normal", "none", "external", "ignored"}
CLEAN_PROPS = {"normal", "none"}


def parse_revision_output(output: str) -> Optional[int]:
    """Last revision number reported by checkout/update/switch/commit output."""
    matches = REVISION_PATTERN.findall(output)
    return int(matches[-1]) if matches else None


def parse_status_xml(output: str) -> List[Tuple[str, str, str]]:
    """Parse ``svn status --xml`` into ``(path, item, props)`` tuples."""
    root = _parse_xml(output, "status")
    entries = []
    for entry in root.iter("entry"):
        wc_status = entry.find("wc-status")
        if wc_status is None:
            continue
        entries.append((
            entry.get("path", ""),
            wc_status.get("item", "none"),
            wc_status.get("props", "none")
        ))
    return entries


def parse_log_xml(output: str) -> List[LogEntry]:
    """Parse ``svn log --xml -v`` output."""
    root = _parse_xml(output, "log")
    entries = []
    for logentry in root.findall("logentry"):
        changed_paths = []
        paths = logentry.find("paths")
        if paths is not None:
            for path in paths.findall("path"):
                copy_from_rev = path.get("copyfrom-rev")
                changed_paths.append(ChangedPath(
                    action=path.get("action", ""),
                    path=(path.text or "").strip(),
                    kind=path.get("kind", ""),
                    copy_from_path=path.get("copyfrom-path"),
                    copy_from_revision=int(copy_from_rev) if copy_from_rev else None
                ))
        entries.append(LogEntry(
            revision=int(logentry.get("revision", "0")),
            author=logentry.findtext("author", default=""),
            date=logentry.findtext("date", default=""),
            message=(logentry.findtext("msg", default="") or "").strip(),
            changed_paths=changed_paths
        ))
    return entries


def _parse_xml(output: str, operation: str) -> ET.Element:
    try:
        return ET.fromstring(output)
    except ET.ParseError as e:
        raise BackendError(
            f"Could not parse svn {operation} output: {e}",
            operation=operation,
            output=output
        ) from e


def has_changes(status_entries: List[Tuple[str, str, str]]) -> bool:
    return any(
        item not in CLEAN_ITEMS or props not in CLEAN_PROPS
        for _, item, props in status_entries
    )


class SvnBackend(VersionControlBackend):
    """
    Runs ``svn`` and ``svnadmin`` through ``subprocess``.

    Every svn call is non-interactive and bounded by the configured
    timeout. Failures are classified from svn's error codes; nothing is
    retried.
    """

    def __init__(self, config: Config, performance_logger: Optional[PerformanceLogger] = None):
        self.svn_executable = config.svn_executable
        self.svnadmin_executable = config.svnadmin_executable
        self.username = config.svn_username
        self.password = config.svn_password
        self.timeout = config.command_timeout
        self.performance = performance_logger or get_performance_logger()
        self.logger = logging.getLogger('svnws.backend.svn')

    def _auth_args(self) -> List[str]:
        if not self.username:
            return []
        args = ["--username", self.username]
        if self.password:
            args += ["--password", self.password]
        return args + ["--no-auth-cache"]

    @staticmethod
    def _display(command: List[str]) -> List[str]:
        shown = list(command)
        for index, arg in enumerate(shown[:-1]):
            if arg == "--password":
                shown[index + 1] = "****"
        return shown

    def _run(self, operation: str, args: List[str], admin: bool = False) -> str:
        """Run one svn/svnadmin command and return its stdout."""
        if admin:
            command = [self.svnadmin_executable, *args]
        else:
            command = [self.svn_executable, "--non-interactive", *self._auth_args(), *args]
        display = self._display(command)
        display_str = " ".join(display)

        # Error codes are locale independent, but keep messages in English too
        env = dict(os.environ, LC_MESSAGES="C")

        self.logger.debug(f"Running: {display_str}", extra={'operation': operation})
        start_time = time.time()
        try:
            with self.performance.time_operation(f"svn_{operation}"):
                result = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    timeout=self.timeout,
                    env=env
                )
        except FileNotFoundError as e:
            raise BackendUnavailable(
                f"Executable not found: {command[0]}",
                operation=operation,
                command=display_str,
                output=str(e)
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BackendUnavailable(
                f"svn {operation} timed out after {self.timeout}s",
                operation=operation,
                command=display_str,
                output=str(e)
            ) from e

        success = result.returncode == 0
        self.performance.log_svn_command_performance(display, time.time() - start_time, success)

        if not success:
            output = result.stderr or result.stdout or ""
            raise classify_svn_error(operation, output, command=display_str, returncode=result.returncode)
        return result.stdout or ""

    def _status(self, path: Path) -> List[Tuple[str, str, str]]:
        return parse_status_xml(self._run("status", ["status", "--xml", str(path)]))

    # Working copy operations

    def checkout(self, url: str, path: Path) -> OperationResult:
        output = self._run("checkout", ["checkout", url, str(path)])
        revision = parse_revision_output(output)
        return OperationResult(True, f"Checked out {url} at revision {revision}", "checkout", revision, output)

    def update(self, path: Path) -> OperationResult:
        output = self._run("update", ["update", str(path)])
        revision = parse_revision_output(output)
        return OperationResult(True, f"At revision {revision}", "update", revision, output)

    def commit(self, path: Path, message: str) -> OperationResult:
        status = self._status(path)
        if not has_changes(status):
            return OperationResult(True, "Nothing to commit", "commit", None)

        unversioned = [entry_path for entry_path, item, _ in status if item == "unversioned"]
        missing = [entry_path for entry_path, item, _ in status if item == "missing"]
        if unversioned:
            self._run("add", ["add", "--force", *unversioned])
        if missing:
            self._run("delete", ["delete", "--force", *missing])

        output = self._run("commit", ["commit", str(path), "-m", message])
        revision = parse_revision_output(output)
        if revision is None:
            return OperationResult(True, "Nothing to commit", "commit", None, output)
        return OperationResult(True, f"Committed revision {revision}", "commit", revision, output)

    def log(
        self,
        target: LogTarget,
        revision_range: Optional[str] = None,
        limit: Optional[int] = None,
        stop_on_copy: bool = False
    ) -> List[LogEntry]:
        args = ["log", "--xml", "-v"]
        if revision_range:
            args += ["-r", revision_range]
        if limit:
            args += ["-l", str(limit)]
        if stop_on_copy:
            args.append("--stop-on-copy")
        args.append(str(target))
        return parse_log_xml(self._run("log", args))

    def diff_revision(self, path: LogTarget, revision: int) -> RevisionDiff:
        output = self._run("diff", ["diff", "-c", str(revision), str(path)])
        return RevisionDiff(revision=revision, diff=output)

    def revert_local(self, path: Path) -> OperationResult:
        output = self._run("revert", ["revert", "-R", str(path)])
        return OperationResult(True, "Local modifications reverted", "revert", None, output)

    def switch_working_copy(self, path: Path, new_url: str) -> OperationResult:
        output = self._run("switch", ["switch", new_url, str(path), "--ignore-ancestry"])
        revision = parse_revision_output(output)
        return OperationResult(True, f"Switched to {new_url}", "switch", revision, output)

    def remove_working_copy(self, path: Path) -> OperationResult:
        path = Path(path)
        if not path.exists():
            return OperationResult(True, f"No working copy at {path}", "remove_working_copy")
        try:
            remove_directory_tree(path)
        except OSError as e:
            raise BackendError(
                f"Failed to remove working copy {path}: {e}",
                operation="remove_working_copy",
                output=str(e)
            ) from e
        self.logger.info(f"Removed working copy {path}", extra={'operation': 'remove_working_copy'})
        return OperationResult(True, f"Removed {path}", "remove_working_copy")

    def has_local_modifications(self, path: Path) -> bool:
        return has_changes(self._status(path))

    def working_copy_url(self, path: Path) -> str:
        return self._run("info", ["info", "--show-item", "url", str(path)]).strip()

    # Repository operations

    def create_branch(
        self,
        source_url: str,
        dest_url: str,
        message: str,
        source_revision: Optional[int] = None
    ) -> OperationResult:
        source = f"{source_url}@{source_revision}" if source_revision is not None else source_url
        output = self._run("copy", ["copy", source, dest_url, "--parents", "-m", message])
        revision = parse_revision_output(output)
        return OperationResult(True, f"Created {dest_url}", "create_branch", revision, output)

    def delete_branch(self, url: str, message: str) -> OperationResult:
        output = self._run("delete", ["delete", url, "-m", message])
        revision = parse_revision_output(output)
        return OperationResult(True, f"Deleted {url}", "delete_branch", revision, output)

    def exists(self, url: str) -> bool:
        try:
            self._run("info", ["info", url])
        except NotFound:
            return False
        return True

    def make_directories(self, urls: Sequence[str], message: str) -> OperationResult:
        output = self._run("mkdir", ["mkdir", "--parents", "-m", message, *urls])
        revision = parse_revision_output(output)
        return OperationResult(True, f"Created {len(urls)} directories", "make_directories", revision, output)

    def list_directory(self, url: str) -> List[str]:
        output = self._run("list", ["list", url])
        return [line.rstrip("/") for line in output.splitlines() if line.endswith("/")]

    def create_repository(self, path: Path) -> OperationResult:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        output = self._run("create", ["create", str(path)], admin=True)
        self.logger.info(f"Created repository {path}", extra={'operation': 'create_repository'})
        return OperationResult(True, f"Created repository {path}", "create_repository", 0, output)
