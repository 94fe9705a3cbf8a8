"""MCP server exposing the svnws verbs as tools."""

import logging
import sys
import threading
import time
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from . import __version__
from .backend import VersionControlBackend
from .backend.performance_logger import get_performance_logger
from .config import Config, load_configuration, validate_configuration
from .errors import error_handler
from .file_lock import cleanup_stale_locks
from .logging_config import setup_logging
from .orchestrator import build_orchestrator


def run_tool(
    config: Config,
    verb: str,
    repository: Optional[str] = None,
    backend: Optional[VersionControlBackend] = None,
    **kwargs: Any
) -> Dict[str, Any]:
    """
    Run one orchestrator verb and return a JSON-ready dict.

    Errors come back as structured error responses; tools never raise.
    """
    try:
        orchestrator = build_orchestrator(config, repository, backend=backend)
        result = getattr(orchestrator, verb)(**kwargs)
    except Exception as e:
        return error_handler.to_response(e).to_dict()
    return error_handler.create_success_response(verb, result.to_dict())


def register_tools(server: FastMCP, server_config: Config, backend: Optional[VersionControlBackend] = None) -> None:
    """Register MCP tools with the server instance."""

    def call(verb: str, repository: Optional[str], **kwargs: Any) -> Dict[str, Any]:
        return run_tool(server_config, verb, repository, backend, **kwargs)

    @server.tool()
    def new_project(project: str, repository: Optional[str] = None) -> dict:
        """
        Create a new project with trunk/, branches/ and tags/ and check out its trunk.

        Args:
            project: Name of the project (letters, digits, '_', '-', '.')
            repository: Configured repository name; the default repository when omitted
        """
        return call("new", repository, project=project)

    @server.tool()
    def checkout(project: str, branch: str = "trunk", repository: Optional[str] = None) -> dict:
        """Check out an existing project on a branch (trunk by default)."""
        return call("checkout", repository, project=project, branch=branch)

    @server.tool()
    def uncheckout(project: Optional[str] = None, discard_changes: bool = False,
                   repository: Optional[str] = None) -> dict:
        """
        Remove a project's working copy and forget it locally.

        Refuses when the working copy has local modifications unless
        discard_changes is true.
        """
        return call("uncheckout", repository, project=project, discard_changes=discard_changes)

    @server.tool()
    def switch(project: Optional[str] = None, branch: Optional[str] = None,
               repository: Optional[str] = None) -> dict:
        """
        Switch to a project and branch.

        The project is checked out if it is not local. Switching branches
        requires a clean working copy.
        """
        return call("switch", repository, branch=branch, project=project)

    @server.tool()
    def delete(project: Optional[str] = None, force: bool = False, discard_changes: bool = False,
               repository: Optional[str] = None) -> dict:
        """
        Delete a project.

        Without force only the working copy is removed and 'restore' brings it
        back. With force the project is also deleted from the repository and
        cannot be restored.
        """
        return call("delete", repository, project=project, force=force, discard_changes=discard_changes)

    @server.tool()
    def restore(project: Optional[str] = None, repository: Optional[str] = None) -> dict:
        """Restore a project removed with a plain delete, on its last branch."""
        return call("restore", repository, project=project)

    @server.tool()
    def pull(project: Optional[str] = None, branch: Optional[str] = None,
             repository: Optional[str] = None) -> dict:
        """Update a working copy, optionally switching to another branch first."""
        return call("pull", repository, project=project, branch=branch)

    @server.tool()
    def push(message: str, project: Optional[str] = None, repository: Optional[str] = None) -> dict:
        """Commit all local changes, adding new files and removing deleted ones."""
        return call("push", repository, message=message, project=project)

    @server.tool()
    def revert(project: Optional[str] = None, repository: Optional[str] = None) -> dict:
        """Discard local modifications in a working copy."""
        return call("revert", repository, project=project)

    @server.tool()
    def create_branch(name: str, project: Optional[str] = None, source: Optional[str] = None,
                      repository: Optional[str] = None) -> dict:
        """Create a branch from the checked-out branch, or from source when given."""
        return call("branch_create", repository, name=name, project=project, source=source)

    @server.tool()
    def delete_branch(name: str, project: Optional[str] = None, repository: Optional[str] = None) -> dict:
        """Delete a branch. Trunk and the checked-out branch cannot be deleted."""
        return call("branch_delete", repository, name=name, project=project)

    @server.tool()
    def restore_branch(name: str, project: Optional[str] = None, repository: Optional[str] = None) -> dict:
        """Recreate a deleted branch from the last revision before its deletion."""
        return call("branch_restore", repository, name=name, project=project)

    @server.tool()
    def branches(
project: Optional[str] = None, repository: Optional[str] = None) -> dict:
        """List trunk and all branches of a project."""
        return call("branches", repository, project=project)

    @server.tool()
    def review(revision: Optional[str] = None, project: Optional[str] = None,
               repository: Optional[str] = None) -> dict:
        """Show the log message and diff of one revision (latest by default)."""
        return call("review", repository, revision=revision, project=project)

    @server.tool()
    def log(project: Optional[str] = None, limit: Optional[int] = None, all_history: bool = False,
            repository: Optional[str] = None) -> dict:
        """History of the checked-out branch; all_history includes revisions before the branch was created."""
        return call("log", repository, project=project, limit=limit, all_history=all_history)

    @server.tool()
    def list_projects(remote: bool = False, repository: Optional[str] = None) -> dict:
        """Projects recorded in the workspace, and with remote=true those in the repository."""
        return call("list", repository, remote=remote)

    @server.tool()
    def status(project: Optional[str] = None, repository: Optional[str] = None) -> dict:
        """Compare recorded workspace state with the disk and the repository."""
        return call("status", repository, project=project)

    @server.tool()
    def performance_summary() -> dict:
        """Timing summary of the svn commands run by this server process."""
        return error_handler.create_success_response(
            "performance_summary", get_performance_logger().get_performance_summary()
        )

    logging.getLogger('svnws.init').info("MCP tools registered successfully")


def initialize_server(backend: Optional[VersionControlBackend] = None) -> FastMCP:
    """Initialize MCP server with stdio transport."""
    server_config = load_configuration()
    setup_logging(server_config)
    init_logger = logging.getLogger('svnws.init')

    validation_issues = validate_configuration(server_config)
    for issue in validation_issues:
        if issue.startswith("ERROR:"):
            init_logger.error(issue[7:])
        elif issue.startswith("WARNING:"):
            init_logger.warning(issue[9:])

    error_count = sum(1 for issue in validation_issues if issue.startswith("ERROR:"))
    if error_count > 0:
        init_logger.critical(f"Server startup failed due to {error_count} configuration error(s)")
        sys.exit(1)

    init_logger.info(
        f"Configuration loaded: workspace_root={server_config.workspace_root}, "
        f"repositories={sorted(server_config.repositories)}"
    )

    server = FastMCP("svnws Workspace Manager", log_level=server_config.log_level)
    register_tools(server, server_config, backend)
    init_logger.info("svnws MCP server initialized successfully")
    return server


def start_lock_maintenance(config: Config, interval_seconds: float = 1800) -> threading.Thread:
    """Start a daemon thread that periodically removes stale lock files."""
    def lock_maintenance():
        maintenance_logger = logging.getLogger('svnws.file_lock')
        while True:
            time.sleep(interval_seconds)
            try:
                cleanup_stale_locks(config, max_age_minutes=10)
            except OSError as e:
                maintenance_logger.error(f"Lock maintenance error: {e}")

    maintenance_thread = threading.Thread(target=lock_maintenance, daemon=True)
    maintenance_thread.start()
    logging.getLogger('svnws.init').info("Lock maintenance started")
    return maintenance_thread


def main():
    """Entry point for the svnws MCP server (stdio transport)."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    startup_logger = logging.getLogger('svnws.startup')
    startup_logger.info(f"svnws MCP server {__version__}")

    if sys.version_info < (3, 10):
        startup_logger.error(f"Python 3.10+ required, found {sys.version_info.major}.{sys.version_info.minor}")
        sys.exit(1)

    try:
        server = initialize_server()
        start_lock_maintenance(load_configuration())
        startup_logger.info("Starting server with stdio transport")
        server.run(transport="stdio")
    except KeyboardInterrupt:
        startup_logger.info("Server stopped by user (Ctrl+C)")
    except SystemExit:
        raise
    except Exception as e:
        startup_logger.critical(f"Server failed to start: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
