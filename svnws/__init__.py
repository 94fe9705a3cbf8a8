"""
svnws - manage many Subversion projects from one workspace.

Projects follow the trunk/branches/tags layout and are checked out under a
single workspace root. The tool tracks which projects are checked out, on
which branch, and which were deleted but can be restored.
"""

__version__ = "1.0.0"
__description__ = "Multi-project Subversion workspace manager"

__all__ = ["__version__", "__description__"]
