"""Error taxonomy and structured error responses for svnws."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for structured error handling."""
    VALIDATION = "validation"
    LIFECYCLE = "lifecycle"
    BACKEND = "backend"
    ORPHANED = "orphaned"
    STATE_STORE = "state_store"
    CONFIGURATION = "configuration"


class WorkspaceError(Exception):
    """Base class for every error a workspace command can surface."""

    error_code = "WORKSPACE_ERROR"
    category = ErrorCategory.LIFECYCLE

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def add_context(self, **values: Any) -> "WorkspaceError":
        """Attach context without overwriting what the raiser already recorded."""
        for key, value in values.items():
            if value is not None and key not in self.context:
                self.context[key] = value
        return self

    def __str__(self) -> str:
        return self.message


class InvalidReference(WorkspaceError):
    """Malformed project, branch or revision name. Detected locally."""
    error_code = "INVALID_REFERENCE"
    category = ErrorCategory.VALIDATION


class LifecycleError(WorkspaceError):
    """A lifecycle precondition does not hold for the project."""
    error_code = "LIFECYCLE_ERROR"
    category = ErrorCategory.LIFECYCLE


class NotActive(LifecycleError):
    error_code = "NOT_ACTIVE"


class NotRestorable(LifecycleError):
    error_code = "NOT_RESTORABLE"


class AlreadyActive(LifecycleError):
    error_code = "ALREADY_ACTIVE"


class AlreadyExists(LifecycleError):
    error_code = "ALREADY_EXISTS"


class BranchInUse(LifecycleError):
    error_code = "BRANCH_IN_USE"


class WorkingCopyMissing(LifecycleError):
    """The store records a working copy that is no longer on disk."""
    error_code = "WORKING_COPY_MISSING"


class BackendError(WorkspaceError):
    """
    A version-control backend call failed.

    ``output`` keeps the backend's own text verbatim so it can be shown to
    the user without interpretation.
    """
    error_code = "BACKEND_ERROR"
    category = ErrorCategory.BACKEND

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        command: Optional[str] = None,
        output: str = "",
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context)
        self.operation = operation
        self.command = command
        self.output = output
        if operation:
            self.context.setdefault("operation", operation)


class NotFound(BackendError):
    error_code = "NOT_FOUND"


class Conflict(BackendError):
    error_code = "CONFLICT"


class BackendUnavailable(BackendError):
    error_code = "BACKEND_UNAVAILABLE"


class Orphaned(WorkspaceError):
    """
    Hard delete removed the working copy but the backend deletion failed.

    The project is recorded as ``orphaned`` and needs manual remediation.
    """
    error_code = "ORPHANED"
    category = ErrorCategory.ORPHANED

    def __init__(self, message: str, cause: Optional[BackendError] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.cause = cause


class StateStoreError(WorkspaceError):
    error_code = "STATE_STORE_ERROR"
    category = ErrorCategory.STATE_STORE


class ConfigurationError(WorkspaceError):
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIGURATION


def build_resolution_steps() -> Dict[str, List[str]]:
    """Build user guidance for each error code."""
    return {
        InvalidReference.error_code: [
            "Use only letters, digits, '_', '-' and '.' in project and branch names",
            "Do not use path separators; branches live directly under branches/",
        ],
        NotActive.error_code: [
            "Run 'svnws list' to see which projects are checked out",
            "Check the project out first with 'svnws checkout <project>'",
        ],
        NotRestorable.error_code: [
            "Only projects removed with a plain 'delete' can be restored",
            "Use 'svnws checkout <project>' if the project still exists in the repository",
        ],
        AlreadyActive.error_code: [
            "The project is already checked out; use 'svnws switch' to change branch",
        ],
        AlreadyExists.error_code: [
            "Pick a different name, or check the existing one out with 'svnws checkout'",
        ],
        BranchInUse.error_code: [
            "Switch the working copy to another branch before deleting this one",
        ],
        WorkingCopyMissing.error_code: [
            "The working copy directory was removed outside svnws",
            "Run 'svnws uncheckout <project>' and then 'svnws checkout <project>'",
        ],
        NotFound.error_code: [
            "Verify the project and branch names with 'svnws branch' or 'svnws list --remote'",
            "Check that the repository URL in SVNWS_REPOSITORIES is correct",
        ],
        Conflict.error_code: [
            "Commit your local changes with 'svnws push' or discard them with 'svnws revert'",
            "Then run the command again",
        ],
        BackendUnavailable.error_code: [
            "Check your network connection and the repository URL",
            "Verify your Subversion credentials (SVNWS_SVN_USERNAME / SVNWS_SVN_PASSWORD)",
            "Ensure the svn executable is installed and on PATH",
        ],
        BackendError.error_code: [
            "Read the Subversion output below; svnws does not retry automatically",
        ],
        Orphaned.error_code: [
            "The local working copy was removed but the repository still holds the project",
            "Run 'svnws delete --force <project>' again to finish the deletion",
            "Or run 'svnws checkout <project>' to bring the project back",
        ],
        StateStoreError.error_code: [
            "Inspect the workspace state file; a backup is kept next to it as state.json.bak",
        ],
        ConfigurationError.error_code: [
            "Check the SVNWS_* environment variables and your .env file",
        ],
    }


@dataclass
class ErrorResponse:
    """Standardized error response format for workspace commands."""
    error: str
    error_code: str
    message: str
    timestamp: str
    category: str
    context: Optional[Dict[str, Any]] = None
    resolution_steps: List[str] = field(default_factory=list)
    backend_output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary format."""
        result = {
            "error": self.error,
            "error_code": self.error_code,
            "message": self.message,
            "timestamp": self.timestamp,
            "category": self.category
        }
        if self.context:
            result["context"] = self.context
        if self.resolution_steps:
            result["resolution_steps"] = self.resolution_steps
        if self.backend_output:
            result["backend_output"] = self.backend_output
        return result


class ErrorHandler:
    """Turns workspace errors into logged, user-facing responses."""

    def __init__(self):
        self.logger = logging.getLogger('svnws.error_handler')
        self._resolution_steps = build_resolution_steps()

    def resolution_steps_for(self, error: WorkspaceError) -> List[str]:
        """Find guidance for the most specific error class that has some."""
        for klass in type(error).__mro__:
            code = getattr(klass, "error_code", None)
            if code in self._resolution_steps:
                return list(self._resolution_steps[code])
        return []

    def to_response(self, error: Exception) -> ErrorResponse:
        """Build the response for any exception a command raised."""
        if not isinstance(error, WorkspaceError):
            self.logger.error(f"Unexpected error: {error}", exc_info=error)
            return ErrorResponse(
                error="Unexpected error",
                error_code="UNEXPECTED_ERROR",
                message=str(error),
                timestamp=datetime.now().isoformat(),
                category="unexpected"
            )

        backend_output = None
        if isinstance(error, BackendError):
            backend_output = error.output or None
        elif isinstance(error, Orphaned) and error.cause is not None:
            backend_output = error.cause.output or None

        response = ErrorResponse(
            error=type(error).__name__,
            error_code=error.error_code,
            message=error.message,
            timestamp=datetime.now().isoformat(),
            category=error.category.value,
            context=error.context or None,
            resolution_steps=self.resolution_steps_for(error),
            backend_output=backend_output
        )

        level = logging.WARNING if error.category in (
            ErrorCategory.VALIDATION, ErrorCategory.LIFECYCLE
        ) else logging.ERROR
        self.logger.log(
            level,
            f"{response.error}: {response.message}",
            extra={
                'operation': error.context.get('operation', 'command_error'),
                'error_code': response.error_code,
                'project': error.context.get('project'),
                'branch': error.context.get('branch')
            }
        )

        return response

    def create_success_response(self, operation: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a standardized success response."""
        return {
            "success": True,
            "operation": operation,
            "timestamp": datetime.now().isoformat(),
            "data": data
        }


error_handler = ErrorHandler()
