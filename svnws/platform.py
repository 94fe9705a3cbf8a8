"""Cross-platform compatibility utilities for svnws."""

import os
import platform
import shutil
import stat
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Optional, Dict, Any, Union


def is_windows() -> bool:
    """Check if running on Windows."""
    return platform.system().lower() == "windows"


def normalize_path(path: Union[str, Path]) -> Path:
    """
    Normalize a path for the current platform.

    Args:
        path: Path to normalize

    Returns:
        Normalized Path object
    """
    if isinstance(path, str):
        path = Path(path)

    # Expand user home directory (~) first, then resolve to absolute path
    return path.expanduser().resolve()


def path_to_file_url(path: Path) -> str:
    """
    Convert a local repository path into a ``file://`` URL.

    Windows drive paths need an extra leading slash (``file:///C:/...``).
    """
    path_str = str(path).replace("\\", "/")
    if not path_str.startswith("/"):
        return f"file:///{path_str}"
    return f"file://{path_str}"


def get_platform_specific_defaults() -> Dict[str, Any]:
    """
    Get platform-specific configuration defaults.

    Returns:
        Dictionary of platform-specific defaults
    """
    defaults = {
        'home_dir': Path.home() / ".svnws",
        'log_level': "INFO",
        'command_timeout': 300.0,
        'lock_timeout': 30.0,
        'svn_executable': "svn",
        'svnadmin_executable': "svnadmin",
    }

    if is_windows():
        defaults.update({
            'svn_executable': "svn.exe",
            'svnadmin_executable': "svnadmin.exe",
            'lock_timeout': 60.0,  # antivirus scanners hold files open on Windows
        })

    return defaults


def create_secure_temp_file(directory: Path, suffix: str = '.tmp') -> tuple[int, Path]:
    """
    Create a secure temporary file in a cross-platform way.

    Args:
        directory: Directory to create the temp file in
        suffix: File suffix

    Returns:
        Tuple of (file_descriptor, file_path)
    """
    directory.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=str(directory), suffix=suffix)
    return fd, Path(temp_path)


def _clear_readonly_and_retry(func, path, _exc_info) -> None:
    # SVN marks pristine copies under .svn read-only
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    func(path)


def remove_directory_tree(path: Path) -> None:
    """Remove a directory tree, clearing read-only bits that block deletion."""
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_clear_readonly_and_retry)
    else:
        shutil.rmtree(path, onerror=_clear_readonly_and_retry)


def validate_svn_availability(svn_executable: str) -> tuple[bool, Optional[str]]:
    """
    Validate that the Subversion client is available on the current platform.

    Returns:
        Tuple of (is_available, error_message)
    """
    try:
        result = subprocess.run(
            [svn_executable, "--version", "--quiet"],
            capture_output=True,
            text=True,
            timeout=10
        )

        if result.returncode == 0:
            return True, None
        else:
            return False, f"svn command failed: {result.stderr}"

    except FileNotFoundError:
        return False, f"svn executable '{svn_executable}' not found"
    except subprocess.TimeoutExpired:
        return False, "svn command timed out"
