"""Command line interface for svnws."""

import argparse
import json
import logging
import sys
from typing import Callable, Dict, List, Optional

from . import __version__
from .config import load_configuration
from .errors import ErrorResponse, error_handler
from .logging_config import setup_logging
from .orchestrator import CommandResult, WorkspaceOrchestrator, build_orchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="svnws",
        description="Manage multiple Subversion projects from one workspace."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--repo", help="Configured repository to act on (default: SVNWS_DEFAULT_REPOSITORY)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        type=str.upper, help="Override SVNWS_LOG_LEVEL")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")

    sub = parser.add_subparsers(dest="verb", metavar="<command>")

    p = sub.add_parser("log", help="Show the history of the current branch")
    p.add_argument("-p", "--project")
    p.add_argument("-a", "--all", action="store_true", help="Include history from before the branch was created")
    p.add_argument("-l", "--limit", type=int)

    for verb, text in (("commit", "Commit local changes"), ("push", "Commit local changes (alias of commit)")):
        p = sub.add_parser(verb, help=text)
        p.add_argument("-m", "--message", required=True)
        p.add_argument("-p", "--project")

    p = sub.add_parser("review", help="Show the log message and diff of a revision")
    p.add_argument("-r", "--revision", help="Revision such as 100 or r100 (default: latest on the branch)")
    p.add_argument("-p", "--project")

    p = sub.add_parser("revert", help="Discard local modifications")
    p.add_argument("-p", "--project")

    p = sub.add_parser("branch", help="List, create, delete or restore branches of a project")
    p.add_argument("name", nargs="?", help="Branch to create (delete with -d, restore with -r); list branches when omitted")
    action = p.add_mutually_exclusive_group()
    action.add_argument("-d", "--delete", action="store_true")
    action.add_argument("-r", "--restore", action="store_true", help="Recreate a deleted branch from its last revision")
    p.add_argument("-s", "--source", help="Branch to copy from (default: the checked-out branch)")
    p.add_argument("-p", "--project")

    p = sub.add_parser("pull", help="Update the working copy")
    p.add_argument("-s", "--source", help="Switch to this branch before updating")
    p.add_argument("-p", "--project")

    p = sub.add_parser("list", help="List projects in the workspace")
    p.add_argument("-r", "--remote", action="store_true", help="Also list the projects in the repository")

    p = sub.add_parser("new", help="Create a project and check out its trunk")
    p.add_argument("project")

    p = sub.add_parser("checkout", help="Check out an existing project")
    p.add_argument("project")
    p.add_argument("-b", "--branch", default="trunk")

    p = sub.add_parser("uncheckout", help="Remove a working copy and forget the project locally")
    p.add_argument("project", nargs="?")
    p.add_argument("--discard-changes", action="store_true")

    p = sub.add_parser("delete", help="Delete a project's working copy (restorable), or the whole project with -f")
    p.add_argument("project", nargs="?")
    p.add_argument("-f", "--force", action="store_true", help="Also delete the project from the repository")
    p.add_argument("--discard-changes", action="store_true")

    p = sub.add_parser("restore", help="Restore a project removed with 'delete'")
    p.add_argument("project", nargs="?")

    p = sub.add_parser("switch", help="Switch to a project and branch")
    p.add_argument("project", nargs="?")
    p.add_argument("-b", "--branch")

    p = sub.add_parser("status", help="Compare recorded state with the disk and the repository")
    p.add_argument("project", nargs="?")

    sub.add_parser("help", help="Show this help")

    return parser


def dispatch(orchestrator: WorkspaceOrchestrator, args: argparse.Namespace) -> CommandResult:
    """Call the orchestrator verb selected on the command line."""
    if args.verb == "branch":
        if args.name is None:
            return orchestrator.branches(args.project)
        if args.delete:
            return orchestrator.branch_delete(args.name, args.project)
        if args.restore:
            return orchestrator.branch_restore(args.name, args.project)
        return orchestrator.branch_create(args.name, args.project, args.source)

    verbs: Dict[str, Callable[[], CommandResult]] = {
        "log": lambda: orchestrator.log(args.project, limit=args.limit, all_history=args.all),
        "commit": lambda: orchestrator.push(args.message, args.project),
        "push": lambda: orchestrator.push(args.message, args.project),
        "review": lambda: orchestrator.review(args.revision, args.project),
        "revert": lambda: orchestrator.revert(args.project),
        "pull": lambda: orchestrator.pull(args.project, args.source),
        "list": lambda: orchestrator.list(remote=args.remote),
        "new": lambda: orchestrator.new(args.project),
        "checkout": lambda: orchestrator.checkout(args.project, args.branch),
        "uncheckout": lambda: orchestrator.uncheckout(args.project, discard_changes=args.discard_changes),
        "delete": lambda: orchestrator.delete(args.project, force=args.force, discard_changes=args.discard_changes),
        "restore": lambda: orchestrator.restore(args.project),
        "switch": lambda: orchestrator.switch(args.branch, args.project),
        "status": lambda: orchestrator.status(args.project),
    }
    return verbs[args.verb]()


def render_result(result: CommandResult) -> str:
    """Human readable rendering of a command result."""
    data = result.data
    lines = [result.message]

    if result.operation == "list":
        for entry in data.get("entries", []):
            marker = "*" if entry.get("current") else " "
            lines.append(f"{marker} {entry['project']:<24} {entry['branch']:<20} {entry['state']:<13} {entry['path']}")
        if "remote_projects" in data:
            lines.append("Projects in repository:")
            lines.extend(f"  {name}" for name in data["remote_projects"])
    elif result.operation == "branches":
        for branch in data.get("branches", []):
            lines.append(f"{'*' if branch['current'] else ' '} {branch['name']}")
    elif result.operation == "log":
        for entry in data.get("entries", []):
            lines.append("-" * 72)
            lines.append(f"r{entry['revision']} | {entry['author']} | {entry['date']}")
            lines.append(entry["message"])
    elif result.operation == "review":
        lines.append(data.get("diff", "").rstrip("\n"))
    elif result.operation == "status":
        for report in data.get("projects", [data]):
            if "project" not in report:
                continue
            flags = " (modified)" if report.get("modified") else ""
            lines.append(f"{report['project']}: {report['state']} on {report['branch']}{flags}")
            lines.extend(f"  drift: {item}" for item in report.get("drift", []))

    return "\n".join(line for line in lines if line)


def render_error(response: ErrorResponse) -> str:
    lines = [f"Error: {response.message}"]
    if response.backend_output:
        lines.append(response.backend_output.rstrip("\n"))
    for step in response.resolution_steps:
        lines.append(f"  - {step}")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verb in (None, "help"):
        parser.print_help()
        return 0

    try:
        config = load_configuration()
        setup_logging(config, args.log_level or config.log_level)
        logging.getLogger('svnws.init').debug(f"svnws {__version__} running '{args.verb}'")

        orchestrator = build_orchestrator(config, args.repo)
        result = dispatch(orchestrator, args)
    except Exception as e:
        response = error_handler.to_response(e)
        if args.json:
            print(json.dumps(response.to_dict(), indent=2))
        else:
            print(render_error(response), file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(render_result(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
