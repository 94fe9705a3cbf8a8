"""
In-process backend.

Repositories live in memory as a mapping from URL to node (directory or
file content). Working copies are real directories on disk, marked with a
``.svn`` directory, so the orchestrator's filesystem checks behave as they
do with Subversion. Used by the test suite.
"""

import difflib
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import BackendError, Conflict, NotFound
from ..platform import path_to_file_url, remove_directory_tree
from .base import (
    ChangedPath, LogEntry, LogTarget, OperationResult, RevisionDiff, VersionControlBackend
)

ADMIN_DIR = ".svn"

# url -> None for a directory, text for a file
Nodes = Dict[str, Optional[str]]


@dataclass
class _WorkingCopy:
    url: str
    revision: int
    base: Dict[str, str] = field(default_factory=dict)


def _norm(url: str) -> str:
    return url.rstrip("/")


def _read_tree(path: Path) -> Dict[str, str]:
    """Files under a working copy, keyed by POSIX relative path."""
    files = {}
    for file_path in sorted(path.rglob("*")):
        relative = file_path.relative_to(path)
        if relative.parts[0] == ADMIN_DIR or not file_path.is_file():
            continue
        files[relative.as_posix()] = file_path.read_text(encoding="utf-8", errors="replace")
    return files


class InMemoryBackend(VersionControlBackend):
    """
    Complete backend kept in process memory.

    ``fail_next(operation, error)`` makes the next call of ``operation``
    raise ``error`` without side effects, for exercising failure paths.
    """

    def __init__(self, root_urls: Sequence[str] = ()):
        self.revision = 0
        self.author = "svnws"
        self._roots: List[str] = [_norm(url) for url in root_urls]
        self._nodes: Nodes = {root: None for root in self._roots}
        self._snapshots: Dict[int, Nodes] = {0: dict(self._nodes)}
        self._log: List[LogEntry] = []
        self._diffs: Dict[int, List[Tuple[str, str, str]]] = {}
        self._working_copies: Dict[str, _WorkingCopy] = {}
        self._failures: Dict[str, List[BackendError]] = defaultdict(list)
        self.calls: List[Tuple[str, ...]] = []
        self.logger = logging.getLogger('svnws.backend.memory')

    # Failure injection

    def fail_next(self, operation: str, error: BackendError) -> None:
        self._failures[operation].append(error)

    def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, *[str(a) for a in args]))
        if self._failures.get(operation):
            error = self._failures[operation].pop(0)
            self.logger.debug(f"Injected failure: {error}", extra={'operation': operation})
            raise error

    # Repository helpers

    def _root_of(self, url: str) -> str:
        for root in sorted(self._roots, key=len, reverse=True):
            if url == root or url.startswith(root + "/"):
                return root
        raise NotFound(f"No repository at {url}", operation="lookup", output=f"svn: E170000: URL '{url}' doesn't exist")

    def _repo_path(self, url: str) -> str:
        root = self._root_of(url)
        return url[len(root):] or "/"

    def _is_dir(self, url: str) -> bool:
        return url in self._nodes and self._nodes[url] is None

    def _subtree(self, url: str) -> List[str]:
        prefix = url + "/"
        return [node for node in self._nodes if node == url or node.startswith(prefix)]

    def _files_under(self, url: str) -> Dict[str, str]:
        prefix = url + "/"
        return {
            node[len(prefix):]: content
            for node, content in self._nodes.items()
            if content is not None and node.startswith(prefix)
        }

    def _require_dir(self, url: str, operation: str) -> None:
        if not self._is_dir(url):
            raise NotFound(
                f"svn {operation} failed: URL '{url}' doesn't exist",
                operation=operation,
                output=f"svn: E170000: URL '{url}' doesn't exist"
            )

    def _new_revision(self, message: str, changed: List[ChangedPath],
                      diffs: Optional[List[Tuple[str, str, str]]] = None) -> int:
        self.revision += 1
        self._log.append(LogEntry(
            revision=self.revision,
            author=self.author,
            date=datetime.now(timezone.utc).isoformat(),
            message=message,
            changed_paths=changed
        ))
        self._diffs[self.revision] = diffs or []
        self._snapshots[self.revision] = dict(self._nodes)
        return self.revision

    def _wc(self, path: Path, operation: str) -> _WorkingCopy:
        wc = self._working_copies.get(str(Path(path)))
        if wc is None or not Path(path).exists():
            raise NotFound(
                f"svn {operation} failed: '{path}' is not a working copy",
                operation=operation,
                output=f"svn: E155007: '{path}' is not a working copy"
            )
        return wc

    def _materialize(self, path: Path, url: str) -> Dict[str, str]:
        files = self._files_under(url)
        for relative, content in files.items():
            target = path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return files

    def _local_changes(self, path: Path, wc: _WorkingCopy) -> Dict[str, Optional[str]]:
        """Files that differ from the base; None marks a deleted file."""
        current = _read_tree(path)
        changes: Dict[str, Optional[str]] = {
            name: content for name, content in current.items() if wc.base.get(name) != content
        }
        for name in wc.base:
            if name not in current:
                changes[name] = None
        return changes

    def _mkdirs(self, url: str, changed: List[ChangedPath]) -> None:
        root = self._root_of(url)
        parts = url[len(root):].strip("/").split("/")
        current = root
        for part in parts:
            current = f"{current}/{part}"
            if current not in self._nodes:
                self._nodes[current] = None
                changed.append(ChangedPath("A", self._repo_path(current), "dir"))

    # VersionControlBackend

    def checkout(self, url: str, path: Path) -> OperationResult:
        self._enter("checkout", url, path)
        url = _norm(url)
        self._require_dir(url, "checkout")
        path = Path(path)
        if path.exists() and any(path.iterdir()):
            raise Conflict(
                f"svn checkout failed: '{path}' is obstructed",
                operation="checkout",
                output=f"svn: E155000: '{path}' is already a working copy for a different URL"
            )
        (path / ADMIN_DIR).mkdir(parents=True, exist_ok=True)
        base = self._materialize(path, url)
        self._working_copies[str(path)] = _WorkingCopy(url=url, revision=self.revision, base=base)
        return OperationResult(True, f"Checked out revision {self.revision}.", "checkout", self.revision)

    def update(self, path: Path) -> OperationResult:
        self._enter("update", path)
        wc = self._wc(path, "update")
        self._require_dir(wc.url, "update")
        path = Path(path)
        local = self._local_changes(path, wc)
        latest = self._files_under(wc.url)
        for name, content in latest.items():
            if name not in local:
                target = path / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
        for name in wc.base:
            if name not in latest and name not in local:
                (path / name).unlink(missing_ok=True)
        wc.base = latest
        wc.revision = self.revision
        return OperationResult(True, f"At revision {self.revision}.", "update", self.revision)

    def commit(self, path: Path, message: str) -> OperationResult:
        self._enter("commit", path, message)
        wc = self._wc(path, "commit")
        path = Path(path)
        changes = self._local_changes(path, wc)
        if not changes:
            return OperationResult(True, "Nothing to commit", "commit", None)
        if wc.revision < self._last_changed(wc.url):
            raise Conflict(
                f"svn commit failed: '{path}' is out of date",
                operation="commit",
                output=f"svn: E155011: '{path}' is out of date"
            )

        changed, diffs = [], []
        for name, content in sorted(changes.items()):
            url = f"{wc.url}/{name}"
            old = self._nodes.get(url) or ""
            if content is None:
                self._nodes.pop(url, None)
                changed.append(ChangedPath("D", self._repo_path(url), "file"))
            else:
                parent = url.rsplit("/", 1)[0]
                if parent not in self._nodes:
                    self._mkdirs(parent, changed)
                changed.append(ChangedPath("M" if url in self._nodes else "A", self._repo_path(url), "file"))
                self._nodes[url] = content
            diffs.append((self._repo_path(url), old, content or ""))

        revision = self._new_revision(message, changed, diffs)
        wc.base = _read_tree(path)
        wc.revision = revision
        return OperationResult(True, f"Committed revision {revision}.", "commit", revision)

    def _last_changed(self, url: str) -> int:
        repo_path = self._repo_path(url)
        for entry in reversed(self._log):
            if any(p.path == repo_path or p.path.startswith(repo_path + "/") for p in entry.changed_paths):
                return entry.revision
        return 0

    def _resolve_log_target(self, target: LogTarget) -> Tuple[str, Optional[_WorkingCopy]]:
        text = str(target)
        wc = self._working_copies.get(str(Path(text))) if "://" not in text else None
        if wc is not None:
            return wc.url, wc
        return _norm(text), None

    def _revision_token(self, token: str, wc: Optional[_WorkingCopy]) -> int:
        token = token.strip().upper()
        if token == "HEAD":
            return self.revision
        if token in ("BASE", "COMMITTED"):
            return wc.revision if wc else self.revision
        if token == "PREV":
            return (wc.revision if wc else self.revision) - 1
        return int(token.lstrip("R"))

    def log(
        self,
        target: LogTarget,
        revision_range: Optional[str] = None,
        limit: Optional[int] = None,
        stop_on_copy: bool = False
    ) -> List[LogEntry]:
        self._enter("log", target)
        url, wc = self._resolve_log_target(target)
        self._require_dir(url, "log")
        repo_path = self._repo_path(url)

        low, high = 0, self.revision
        if revision_range:
            bounds = [self._revision_token(token, wc) for token in revision_range.split(":")]
            low, high = min(bounds), max(bounds)
            if len(bounds) == 1:
                low = high = bounds[0]

        entries = []
        for entry in reversed(self._log):
            if not low <= entry.revision <= high:
                continue
            touched = [
                p for p in entry.changed_paths
                if p.path == repo_path or p.path.startswith(repo_path + "/")
            ]
            if not touched:
                continue
            entries.append(entry)
            if limit and len(entries) >= limit:
                break
            if stop_on_copy and any(p.path == repo_path and p.copy_from_path for p in touched):
                break
        return entries

    def diff_revision(self, path: LogTarget, revision: int) -> RevisionDiff:
        self._enter("diff_revision", path, revision)
        if revision not in self._diffs:
            raise NotFound(
                f"svn diff failed: no such revision {revision}",
                operation="diff",
                output=f"svn: E160006: No such revision {revision}"
            )
        chunks = []
        for repo_path, old, new in self._diffs[revision]:
            chunks.extend(difflib.unified_diff(
                old.splitlines(keepends=True),
                new.splitlines(keepends=True),
                fromfile=f"{repo_path}\t(revision {revision - 1})",
                tofile=f"{repo_path}\t(revision {revision})"
            ))
        return RevisionDiff(revision=revision, diff="".join(chunks))

    def revert_local(self, path: Path) -> OperationResult:
        self._enter("revert_local", path)
        wc = self._wc(path, "revert")
        path = Path(path)
        # Unversioned files stay in place, as with svn revert
        for name in self._local_changes(path, wc):
            if name in wc.base:
                target = path / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(wc.base[name], encoding="utf-8")
        return OperationResult(True, "Local modifications reverted", "revert")

    def switch_working_copy(self, path: Path, new_url: str) -> OperationResult:
        self._enter("switch_working_copy", path, new_url)
        wc = self._wc(path, "switch")
        new_url = _norm(new_url)
        self._require_dir(new_url, "switch")
        path = Path(path)
        for name in wc.base:
            (path / name).unlink(missing_ok=True)
        wc.base = self._materialize(path, new_url)
        wc.url = new_url
        wc.revision = self.revision
        return OperationResult(True, f"Updated to revision {self.revision}.", "switch", self.revision)

    def _nodes_at(self, revision: Optional[int], operation: str) -> Nodes:
        if revision is None:
            return self._nodes
        if revision not in self._snapshots:
            raise NotFound(
                f"svn {operation} failed: no such revision {revision}",
                operation=operation,
                output=f"svn: E160006: No such revision {revision}"
            )
        return self._snapshots[revision]

    def create_branch(
        self,
        source_url: str,
        dest_url: str,
        message: str,
        source_revision: Optional[int] = None
    ) -> OperationResult:
        self._enter("create_branch", source_url, dest_url)
        source_url, dest_url = _norm(source_url), _norm(dest_url)
        source_nodes = self._nodes_at(source_revision, "copy")
        if source_url not in source_nodes or source_nodes[source_url] is not None:
            raise NotFound(
                f"svn copy failed: URL '{source_url}' doesn't exist",
                operation="copy",
                output=f"svn: E170000: URL '{source_url}' doesn't exist"
            )
        if dest_url in self._nodes:
            raise Conflict(
                f"svn copy failed: path '{dest_url}' already exists",
                operation="copy",
                output=f"svn: E160020: Path '{self._repo_path(dest_url)}' already exists"
            )
        changed: List[ChangedPath] = []
        parent = dest_url.rsplit("/", 1)[0]
        if parent not in self._nodes:
            self._mkdirs(parent, changed)
        prefix = source_url + "/"
        for node, content in list(source_nodes.items()):
            if node == source_url or node.startswith(prefix):
                self._nodes[dest_url + node[len(source_url):]] = content
        changed.append(ChangedPath(
            "A", self._repo_path(dest_url), "dir",
            copy_from_path=self._repo_path(source_url),
            copy_from_revision=self.revision if source_revision is None else source_revision
        ))
        revision = self._new_revision(message, changed)
        return OperationResult(True, f"Committed revision {revision}.", "create_branch", revision)

    def delete_branch(self, url: str, message: str) -> OperationResult:
        self._enter("delete_branch", url)
        url = _norm(url)
        self._require_dir(url, "delete")
        for node in self._subtree(url):
            del self._nodes[node]
        revision = self._new_revision(message, [ChangedPath("D", self._repo_path(url), "dir")])
        return OperationResult(True, f"Committed revision {revision}.", "delete_branch", revision)

    def remove_working_copy(self, path: Path) -> OperationResult:
        self._enter("remove_working_copy", path)
        path = Path(path)
        self._working_copies.pop(str(path), None)
        if not path.exists():
            return OperationResult(True, f"No working copy at {path}", "remove_working_copy")
        remove_directory_tree(path)
        return OperationResult(True, f"Removed {path}", "remove_working_copy")

    def exists(self, url: str) -> bool:
        self._enter("exists", url)
        return _norm(url) in self._nodes

    def make_directories(self, urls: Sequence[str], message: str) -> OperationResult:
        self._enter("make_directories", *urls)
        for url in urls:
            if _norm(url) in self._nodes:
                raise Conflict(
                    f"svn mkdir failed: path '{url}' already exists",
                    operation="mkdir",
                    output=f"svn: E160020: Path '{self._repo_path(_norm(url))}' already exists"
                )
        changed: List[ChangedPath] = []
        for url in urls:
            self._mkdirs(_norm(url), changed)
        revision = self._new_revision(message, changed)
        return OperationResult(True, f"Committed revision {revision}.", "make_directories", revision)

    def list_directory(self, url: str) -> List[str]:
        self._enter("list_directory", url)
        url = _norm(url)
        self._require_dir(url, "list")
        prefix = url + "/"
        return sorted(
            node[len(prefix):] for node, content in self._nodes.items()
            if content is None and node.startswith(prefix) and "/" not in node[len(prefix):]
        )

    def has_local_modifications(self, path: Path) -> bool:
        self._enter("has_local_modifications", path)
        wc = self._wc(path, "status")
        return bool(self._local_changes(Path(path), wc))

    def working_copy_url(self, path: Path) -> str:
        self._enter("working_copy_url", path)
        return self._wc(path, "info").url

    def create_repository(self, path: Path) -> OperationResult:
        self._enter("create_repository", path)
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        root = path_to_file_url(path)
        if root not in self._roots:
            self._roots.append(root)
            self._nodes[root] = None
            self._snapshots[self.revision][root] = None
        return OperationResult(True, f"Created repository {path}", "create_repository", 0)
