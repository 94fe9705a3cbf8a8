"""Result values returned by orchestrator verbs."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class CommandResult:
    """Outcome of a successful workspace command."""
    success: bool
    message: str
    operation: str
    project: Optional[str] = None
    branch: Optional[str] = None
    revision: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "message": self.message,
            "operation": self.operation,
        }
        if self.project is not None:
            result["project"] = self.project
        if self.branch is not None:
            result["branch"] = self.branch
        if self.revision is not None:
            result["revision"] = self.revision
        if self.data:
            result["data"] = self.data
        return result


def create_command_result(
    message: str,
    operation: str,
    project: Optional[str] = None,
    branch: Optional[str] = None,
    revision: Optional[int] = None,
    **data: Any
) -> CommandResult:
    """
    Helper to build a successful CommandResult.

    Extra keyword arguments end up in ``data``.
    """
    return CommandResult(
        success=True,
        message=message,
        operation=operation,
        project=project,
        branch=branch,
        revision=revision,
        data=data
    )
