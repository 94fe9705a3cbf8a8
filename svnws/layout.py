"""
Layout resolution for svnws projects.

Every project in a repository follows the same layout::

    <repo-root>/<project>/trunk
    <repo-root>/<project>/branches/<branch>
    <repo-root>/<project>/tags

and is checked out to ``<workspace-root>/<repository>/<project>``. Switching
branches happens in place, so the branch never appears in the local path.

Nothing in this module touches the filesystem or the network.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .config import Repository
from .errors import InvalidReference

TRUNK = "trunk"
BRANCHES = "branches"
TAGS = "tags"

RESERVED_NAMES = (TRUNK, BRANCHES, TAGS)
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
REVISION_KEYWORDS = ("HEAD", "BASE", "COMMITTED", "PREV")
REVISION_PATTERN = re.compile(r"^[rR]?(\d+)$")

Revision = Union[int, str]


@dataclass(frozen=True)
class ResolvedLocation:
    """Backend URL and local working-copy path for a project reference."""
    url: str
    path: Path


def _check_name(kind: str, name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise InvalidReference(f"{kind} name cannot be empty", context={kind.lower(): name})
    if "/" in name or "\\" in name:
        raise InvalidReference(
            f"Invalid {kind.lower()} name: {name!r}. Path separators are not allowed",
            context={kind.lower(): name}
        )
    if name in (".", "..") or not NAME_PATTERN.match(name):
        raise InvalidReference(
            f"Invalid {kind.lower()} name: {name!r}. Only alphanumeric characters, "
            f"underscores (_), hyphens (-), and periods (.) are allowed",
            context={kind.lower(): name}
        )
    return name


def validate_project_name(project: Optional[str]) -> str:
    """Validate a project name and return it unchanged."""
    name = _check_name("Project", project)
    if name.lower() in RESERVED_NAMES:
        raise InvalidReference(
            f"Invalid project name: {name!r} is a reserved keyword",
            context={"project": name}
        )
    return name


def validate_branch_name(ref: Optional[str]) -> str:
    """
    Validate a branch reference.

    ``trunk`` is accepted and denotes the trunk itself. Any other spelling of
    a reserved directory name is rejected.
    """
    name = _check_name("Branch", ref)
    if name == TRUNK:
        return name
    if name.lower() in RESERVED_NAMES:
        raise InvalidReference(
            f"Invalid branch name: {name!r} is a reserved keyword",
            context={"branch": name}
        )
    return name


def parse_revision(value: Union[str, int, None]) -> Revision:
    """
    Parse a revision argument.

    Accepts ``100``, ``r100`` and the keywords HEAD, BASE, COMMITTED and PREV
    (case-insensitive). Returns an int for numbered revisions and the
    upper-cased keyword otherwise.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise InvalidReference(f"Invalid revision: {value}", context={"revision": value})
        return value

    text = (value or "").strip() if isinstance(value, str) else ""
    if text.upper() in REVISION_KEYWORDS:
        return text.upper()

    match = REVISION_PATTERN.match(text)
    if not match:
        raise InvalidReference(
            f"Invalid revision: {value!r}. Use a number such as 100 or r100, or HEAD",
            context={"revision": value}
        )
    return int(match.group(1))


class LayoutResolver:
    """Maps ``(project, ref)`` to canonical URLs and paths for one repository."""

    def __init__(self, repository: Repository, workspace_root: Path):
        self.repository = repository
        self.workspace_root = Path(workspace_root)

    @property
    def root_url(self) -> str:
        return self.repository.root_url.rstrip("/")

    def project_url(self, project: str) -> str:
        return f"{self.root_url}/{validate_project_name(project)}"

    def trunk_url(self, project: str) -> str:
        return f"{self.project_url(project)}/{TRUNK}"

    def branches_url(self, project: str) -> str:
        return f"{self.project_url(project)}/{BRANCHES}"

    def tags_url(self, project: str) -> str:
        return f"{self.project_url(project)}/{TAGS}"

    def branch_url(self, project: str, ref: str) -> str:
        """URL of ``ref``, where ``trunk`` resolves to the trunk directory."""
        ref = validate_branch_name(ref)
        if ref == TRUNK:
            return self.trunk_url(project)
        return f"{self.branches_url(project)}/{ref}"

    def working_copy_path(self, project: str) -> Path:
        return self.workspace_root / self.repository.name / validate_project_name(project)

    def resolve(self, project: str, ref: str) -> ResolvedLocation:
        """Resolve a project reference to its backend URL and local path."""
        return ResolvedLocation(
            url=self.branch_url(project, ref),
            path=self.working_copy_path(project)
        )

    def ref_from_url(self, project: str, url: str) -> Optional[str]:
        """
        Inverse of :meth:`branch_url`.

        Returns ``trunk``, a branch name, or None when ``url`` is not a
        branch root of ``project`` (a tag, a subdirectory, another project).
        """
        prefix = self.project_url(project) + "/"
        url = url.rstrip("/")
        if not url.startswith(prefix):
            return None

        parts = url[len(prefix):].split("/")
        if parts == [TRUNK]:
            return TRUNK
        if len(parts) == 2 and parts[0] == BRANCHES and parts[1]:
            return parts[1]
        return None
