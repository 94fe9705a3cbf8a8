"""Classification of Subversion failures into backend error types."""

import re
from typing import Dict, Optional, Type

from ..errors import BackendError, BackendUnavailable, Conflict, NotFound

SVN_ERROR_CODE = re.compile(r"\b([EW]\d{6})\b")


def build_error_codes() -> Dict[str, Type[BackendError]]:
    """Map Subversion error codes to error types."""
    return {
        # Missing URLs, paths and working copies
        "E170000": NotFound,   # URL doesn't exist
        "W170000": NotFound,
        "E160013": NotFound,   # path not found in repository
        "W160013": NotFound,
        "E155007": NotFound,   # not a working copy
        "E155010": NotFound,   # node not found in working copy
        "E200009": NotFound,   # some targets don't exist
        "E195012": NotFound,   # unable to find repository location
        "E180001": NotFound,   # unable to open repository

        # Local state prevents the operation
        "E155000": Conflict,   # obstructed / already a working copy for another URL
        "E155004": Conflict,   # working copy locked, cleanup needed
        "E155011": Conflict,   # out of date
        "E155015": Conflict,   # remains in conflict
        "E155035": Conflict,   # cannot perform operation on a conflicted path
        "E155037": Conflict,   # previous operation not finished
        "E160020": Conflict,   # path already exists
        "E160024": Conflict,   # resource out of date
        "E160028": Conflict,   # directory out of date
        "E195016": Conflict,   # switch blocked by local changes
        "E200024": Conflict,   # tree conflict

        # Network, authentication and server availability
        "E170001": BackendUnavailable,  # authorization failed
        "E170013": BackendUnavailable,  # unable to connect
        "E215004": BackendUnavailable,  # no more credentials
        "E175002": BackendUnavailable,  # connection failure
        "E175013": BackendUnavailable,  # access forbidden
        "E210002": BackendUnavailable,  # network connection closed unexpectedly
        "E670002": BackendUnavailable,  # name resolution failure
        "E670008": BackendUnavailable,  # unknown host
        "E000111": BackendUnavailable,  # connection refused
        "E000110": BackendUnavailable,  # connection timed out
        "E731001": BackendUnavailable,  # no such host (Windows)
    }


def build_error_patterns() -> Dict[str, Type[BackendError]]:
    """Map lower-case message fragments to error types, for output without codes."""
    return {
        # Missing
        "doesn't exist": NotFound,
        "does not exist": NotFound,
        "path not found": NotFound,
        "is not a working copy": NotFound,
        "unable to open repository": NotFound,

        # Local state
        "out of date": Conflict,
        "out-of-date": Conflict,
        "conflict": Conflict,
        "obstruct": Conflict,
        "is locked": Conflict,
        "run 'svn cleanup'": Conflict,
        "already exists": Conflict,

        # Availability
        "authorization failed": BackendUnavailable,
        "authentication failed": BackendUnavailable,
        "unable to connect": BackendUnavailable,
        "connection refused": BackendUnavailable,
        "connection timed out": BackendUnavailable,
        "could not resolve": BackendUnavailable,
        "network is unreachable": BackendUnavailable,
        "no more credentials": BackendUnavailable,
    }


_ERROR_CODES = build_error_codes()
_ERROR_PATTERNS = build_error_patterns()


def classify_error_type(output: str) -> Type[BackendError]:
    """
    Pick the error type for a failed command's output.

    Error codes win over message fragments. The first recognised code is
    used since svn reports the root cause first.
    """
    for code in SVN_ERROR_CODE.findall(output):
        if code in _ERROR_CODES:
            return _ERROR_CODES[code]

    lowered = output.lower()
    for pattern, error_type in _ERROR_PATTERNS.items():
        if pattern in lowered:
            return error_type

    return BackendError


def classify_svn_error(
    operation: str,
    output: str,
    command: Optional[str] = None,
    returncode: Optional[int] = None
) -> BackendError:
    """Build the error for a failed svn command, keeping its output verbatim."""
    error_type = classify_error_type(output)
    first_line = next((line.strip() for line in output.splitlines() if line.strip()), "")
    summary = first_line or f"exit status {returncode}"
    return error_type(
        f"svn {operation} failed: {summary}",
        operation=operation,
        command=command,
        output=output
    )
