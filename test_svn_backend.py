#!/usr/bin/env python3
"""
Tests for the svn command-line backend.

svn itself is never executed: subprocess.run is mocked and the tests check
the command lines built, the parsing of svn output and the classification
of failures.
"""

import subprocess
import sys
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent))

from svnws.backend.error_patterns import classify_error_type, classify_svn_error
from svnws.backend.performance_logger import PerformanceLogger
from svnws.backend.svn import (
    SvnBackend, has_changes, parse_log_xml, parse_revision_output, parse_status_xml
)
from svnws.config import Config, Repository
from svnws.errors import BackendError, BackendUnavailable, Conflict, NotFound

LOG_XML = """<?xml version="1.0" encoding="UTF-8"?>
<log>
<logentry revision="12">
<author>alice</author>
<date>2024-03-01T10:00:00.000000Z</date>
<paths>
<path action="A" kind="dir" copyfrom-path="/alpha/trunk" copyfrom-rev="11">/alpha/branches/feature</path>
</paths>
<msg>[svnws] Create branch feature</msg>
</logentry>
<logentry revision="11">
<author>bob</author>
<date>2024-02-28T09:30:00.000000Z</date>
<paths>
<path action="M" kind="file">/alpha/trunk/README</path>
</paths>
<msg>Fix typo
</msg>
</logentry>
</log>
"""

STATUS_DIRTY_XML = """<?xml version="1.0" encoding="UTF-8"?>
<status>
<target path="/work/main/alpha">
<entry path="/work/main/alpha/new.txt"><wc-status item="unversioned" props="none"/></entry>
<entry path="/work/main/alpha/README"><wc-status item="modified" props="none" revision="11"/></entry>
<entry path="/work/main/alpha/old.txt"><wc-status item="missing" props="none"/></entry>
</target>
</status>
"""

STATUS_CLEAN_XML = """<?xml version="1.0" encoding="UTF-8"?>
<status>
<target path="/work/main/alpha">
<entry path="/work/main/alpha/vendor"><wc-status item="external" props="none"/></entry>
</target>
</status>
"""


def completed(stdout="", stderr="", returncode=0):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


def make_backend(temp_dir, **overrides):
    config = Config(
        home_dir=Path(temp_dir),
        repositories={"main": Repository("main", "https://svn.example.com/main")},
        **overrides
    )
    return SvnBackend(config, performance_logger=PerformanceLogger("svnws.test.performance"))


def test_output_parsers():
    print("Testing svn output parsers")
    print("-" * 40)

    assert parse_revision_output("A  x\nChecked out revision 42.\n") == 42
    assert parse_revision_output("Sending  a\nCommitted revision 7.\n") == 7
    assert parse_revision_output("Updating '.':\nAt revision 9.\n") == 9
    assert parse_revision_output("") is None
    print("  ✓ revision numbers are read from command output")

    entries = parse_log_xml(LOG_XML)
    assert [e.revision for e in entries] == [12, 11]
    assert entries[0].author == "alice"
    assert entries[0].changed_paths[0].copy_from_path == "/alpha/trunk"
    assert entries[0].changed_paths[0].copy_from_revision == 11
    assert entries[1].message == "Fix typo"
    print("  ✓ log XML becomes LogEntry objects with changed paths")

    dirty = parse_status_xml(STATUS_DIRTY_XML)
    assert ("/work/main/alpha/new.txt", "unversioned", "none") in dirty
    assert has_changes(dirty)
    assert not has_changes(parse_status_xml(STATUS_CLEAN_XML))
    print("  ✓ status XML tells clean from modified working copies")

    try:
        parse_log_xml("<log><logentry")
    except BackendError as e:
        assert e.output == "<log><logentry"
        print("  ✓ malformed XML raises BackendError")
    else:
        raise AssertionError("expected BackendError")


def test_error_classification():
    print("\nTesting svn error classification")
    print("-" * 40)

    cases = {
        "svn: E170000: URL 'https://x/alpha/trunk' doesn't exist\n": NotFound,
        "svn: E155007: '/tmp/x' is not a working copy\n": NotFound,
        "svn: E155011: File '/w/a' is out of date\nsvn: E160028: Directory out of date\n": Conflict,
        "svn: E195016: Cannot switch: local modifications\n": Conflict,
        "svn: E170013: Unable to connect to a repository at URL\nsvn: E000111: Connection refused\n": BackendUnavailable,
        "svn: E215004: No more credentials or we tried too many times.\n": BackendUnavailable,
        "svn: warning: path already exists\n": Conflict,
        "svn: something unusual happened\n": BackendError,
    }
    for output, expected in cases.items():
        assert classify_error_type(output) is expected, (output, classify_error_type(output))
    print(f"  ✓ {len(cases)} svn outputs map to the right error type")

    error = classify_svn_error("checkout", "\nsvn: E170000: URL doesn't exist\n", command="svn checkout x")
    assert isinstance(error, NotFound)
    assert error.message == "svn checkout failed: svn: E170000: URL doesn't exist"
    assert error.output == "\nsvn: E170000: URL doesn't exist\n"
    assert error.command == "svn checkout x"
    print("  ✓ message quotes the first line, output kept verbatim")

    assert classify_svn_error("update", "", returncode=3).message == "svn update failed: exit status 3"
    print("  ✓ empty output falls back to the exit status")


def test_command_lines_and_credentials():
    print("\nTesting command construction")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        backend = make_backend(temp_dir, svn_username="alice", svn_password="s3cret", command_timeout=12)
        with patch("svnws.backend.svn.subprocess.run") as mock_run:
            mock_run.return_value = completed("A  a\nChecked out revision 5.\n")
            result = backend.checkout("https://svn.example.com/main/alpha/trunk", Path("/work/main/alpha"))

        assert result.success and result.revision == 5
        args, kwargs = mock_run.call_args
        command = args[0]
        assert command[:2] == ["svn", "--non-interactive"]
        assert command[2:7] == ["--username", "alice", "--password", "s3cret", "--no-auth-cache"]
        assert command[7:] == ["checkout", "https://svn.example.com/main/alpha/trunk", str(Path("/work/main/alpha"))]
        assert kwargs["timeout"] == 12
        assert kwargs["env"]["LC_MESSAGES"] == "C"
        print("  ✓ non-interactive, credentials, timeout and locale are passed")

        assert SvnBackend._display(command)[5] == "****"
        print("  ✓ password is masked in displayed commands")

        with patch("svnws.backend.svn.subprocess.run") as mock_run:
            mock_run.return_value = completed(stderr="svn: E170000: URL 'x' doesn't exist\n", returncode=1)
            try:
                backend.checkout("https://svn.example.com/main/ghost/trunk", Path("/work/main/ghost"))
            except NotFound as e:
                assert "s3cret" not in e.command
                assert "****" in e.command
                print("  ✓ failed commands raise classified errors without leaking the password")
            else:
                raise AssertionError("expected NotFound")


def test_unavailable_executable_and_timeout():
    print("\nTesting unavailable svn")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        backend = make_backend(temp_dir)
        with patch("svnws.backend.svn.subprocess.run", side_effect=FileNotFoundError("svn")):
            try:
                backend.update(Path("/work/main/alpha"))
            except BackendUnavailable as e:
                assert "svn" in e.message
                print("  ✓ missing executable raises BackendUnavailable")
            else:
                raise AssertionError("expected BackendUnavailable")

        with patch("svnws.backend.svn.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="svn update", timeout=300)):
            try:
                backend.update(Path("/work/main/alpha"))
            except BackendUnavailable as e:
                assert "timed out" in e.message
                print("  ✓ timeouts raise BackendUnavailable")
            else:
                raise AssertionError("expected BackendUnavailable")


def test_commit_schedules_adds_and_deletes():
    print("\nTesting commit")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        backend = make_backend(temp_dir)
        path = Path("/work/main/alpha")

        with patch("svnws.backend.svn.subprocess.run") as mock_run:
            mock_run.side_effect = [
                completed(STATUS_DIRTY_XML),
                completed("A  new.txt\n"),
                completed("D  old.txt\n"),
                completed("Sending  README\nCommitted revision 13.\n"),
            ]
            result = backend.commit(path, "[svnws] update")

        verbs = [call.args[0][2] for call in mock_run.call_args_list]
        assert verbs == ["status", "add", "delete", "commit"]
        assert mock_run.call_args_list[1].args[0][-1] == "/work/main/alpha/new.txt"
        assert mock_run.call_args_list[2].args[0][-1] == "/work/main/alpha/old.txt"
        assert mock_run.call_args_list[3].args[0][-2:] == ["-m", "[svnws] update"]
        assert result.revision == 13
        print("  ✓ unversioned files are added and missing files deleted before commit")

        with patch("svnws.backend.svn.subprocess.run", return_value=completed(STATUS_CLEAN_XML)) as mock_run:
            result = backend.commit(path, "[svnws] nothing")
        assert mock_run.call_count == 1
        assert result.success and result.revision is None and result.message == "Nothing to commit"
        print("  ✓ a clean working copy commits nothing")


def test_repository_queries():
    print("\nTesting repository queries")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        backend = make_backend(temp_dir)

        with patch("svnws.backend.svn.subprocess.run") as mock_run:
            mock_run.side_effect = [
                completed("Path: trunk\n"),
                completed(stderr="svn: E170000: URL doesn't exist\n", returncode=1),
            ]
            assert backend.exists("https://svn.example.com/main/alpha/trunk")
            assert not backend.exists("https://svn.example.com/main/beta/trunk")
        print("  ✓ exists maps NotFound to False")

        with patch("svnws.backend.svn.subprocess.run",
                   return_value=completed(stderr="svn: E170013: Unable to connect\n", returncode=1)):
            try:
                backend.exists("https://svn.example.com/main/alpha")
            except BackendUnavailable:
                print("  ✓ exists does not hide connection failures")
            else:
                raise AssertionError("expected BackendUnavailable")

        with patch("svnws.backend.svn.subprocess.run", return_value=completed("alpha/\nbeta/\nREADME\n")):
            assert backend.list_directory("https://svn.example.com/main") == ["alpha", "beta"]
        print("  ✓ list_directory returns only directories")

        with patch("svnws.backend.svn.subprocess.run", return_value=completed(LOG_XML)) as mock_run:
            entries = backend.log("https://svn.example.com/main/alpha/trunk", revision_range="HEAD:1",
                                  limit=5, stop_on_copy=True)
        command = mock_run.call_args.args[0]
        assert command[2:] == ["log", "--xml", "-v", "-r", "HEAD:1", "-l", "5", "--stop-on-copy",
                               "https://svn.example.com/main/alpha/trunk"]
        assert len(entries) == 2
        print("  ✓ log passes range, limit and stop-on-copy")

        with patch("svnws.backend.svn.subprocess.run",
                   return_value=completed("https://svn.example.com/main/alpha/branches/x\n")):
            assert backend.working_copy_url(Path("/w")) == "https://svn.example.com/main/alpha/branches/x"
        print("  ✓ working_copy_url reads svn info")

        with patch("svnws.backend.svn.subprocess.run",
                   return_value=completed("\nCommitted revision 12.\n")) as mock_run:
            result = backend.create_branch(
                "https://svn.example.com/main/alpha/branches/old",
                "https://svn.example.com/main/alpha/branches/old",
                "[svnws] Restore branch old from r9",
                source_revision=9
            )
        command = mock_run.call_args.args[0]
        assert command[2:] == ["copy", "https://svn.example.com/main/alpha/branches/old@9",
                               "https://svn.example.com/main/alpha/branches/old", "--parents",
                               "-m", "[svnws] Restore branch old from r9"]
        assert result.revision == 12
        print("  ✓ copies from an older revision use a peg revision")

        with patch("svnws.backend.svn.subprocess.run", return_value=completed()) as mock_run:
            backend.create_repository(Path(temp_dir) / "repos" / "main")
        assert mock_run.call_args.args[0][:2] == ["svnadmin", "create"]
        print("  ✓ repositories are created with svnadmin")


def test_remove_working_copy_and_performance():
    print("\nTesting working copy removal and timing")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        backend = make_backend(temp_dir)
        wc = Path(temp_dir) / "wc"
        (wc / ".svn").mkdir(parents=True)
        (wc / "file.txt").write_text("x")

        assert backend.remove_working_copy(wc).success
        assert not wc.exists()
        assert backend.remove_working_copy(wc).success
        print("  ✓ removal is idempotent")

        with patch("svnws.backend.svn.subprocess.run", return_value=completed("At revision 3.\n")):
            backend.update(Path("/work/main/alpha"))
        summary = backend.performance.get_performance_summary()
        assert summary["total_operations"] >= 1
        assert summary["success_rate"] == 1.0
        print("  ✓ svn calls are timed by the performance logger")


def run_all_tests():
    """Run all svn backend tests."""
    print("SVN Backend Test Suite")
    print("=" * 50)

    tests = [
        test_output_parsers,
        test_error_classification,
        test_command_lines_and_credentials,
        test_unavailable_executable_and_timeout,
        test_commit_schedules_adds_and_deletes,
        test_repository_queries,
        test_remove_working_copy_and_performance,
    ]

    failed = 0
    for test in tests:
        try:
            test()
        except Exception as e:
            failed += 1
            print(f"  ✗ {test.__name__} failed: {e}")

    print("\n" + "=" * 50)
    print(f"Test Results: {len(tests) - failed} passed, {failed} failed")
    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
