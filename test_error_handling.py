#!/usr/bin/env python3
"""
Test error taxonomy and structured error responses.

Checks that every error kind maps to a stable code and category, that
resolution guidance is found through the class hierarchy, and that backend
output reaches the user untouched.
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from svnws.errors import (
    AlreadyActive, BackendError, BackendUnavailable, BranchInUse, Conflict, ConfigurationError,
    ErrorCategory, ErrorHandler, InvalidReference, NotActive, NotFound, NotRestorable, Orphaned,
    StateStoreError, WorkingCopyMissing, WorkspaceError, error_handler
)


def test_error_codes_and_categories():
    print("Testing error codes and categories")
    print("-" * 40)

    expected = {
        InvalidReference: ("INVALID_REFERENCE", ErrorCategory.VALIDATION),
        NotActive: ("NOT_ACTIVE", ErrorCategory.LIFECYCLE),
        NotRestorable: ("NOT_RESTORABLE", ErrorCategory.LIFECYCLE),
        AlreadyActive: ("ALREADY_ACTIVE", ErrorCategory.LIFECYCLE),
        BranchInUse: ("BRANCH_IN_USE", ErrorCategory.LIFECYCLE),
        WorkingCopyMissing: ("WORKING_COPY_MISSING", ErrorCategory.LIFECYCLE),
        NotFound: ("NOT_FOUND", ErrorCategory.BACKEND),
        Conflict: ("CONFLICT", ErrorCategory.BACKEND),
        BackendUnavailable: ("BACKEND_UNAVAILABLE", ErrorCategory.BACKEND),
        Orphaned: ("ORPHANED", ErrorCategory.ORPHANED),
        StateStoreError: ("STATE_STORE_ERROR", ErrorCategory.STATE_STORE),
        ConfigurationError: ("CONFIGURATION_ERROR", ErrorCategory.CONFIGURATION),
    }
    for klass, (code, category) in expected.items():
        assert issubclass(klass, WorkspaceError)
        assert klass.error_code == code, klass
        assert klass.category is category, klass
    assert issubclass(NotFound, BackendError) and issubclass(Conflict, BackendError)
    print(f"  ✓ {len(expected)} error kinds have stable codes and categories")


def test_add_context_does_not_overwrite():
    print("\nTesting error context")
    print("-" * 40)

    error = NotFound("gone", operation="checkout", context={"project": "alpha"})
    error.add_context(project="beta", branch="trunk", command=None)
    assert error.context == {"project": "alpha", "operation": "checkout", "branch": "trunk"}
    print("  ✓ context from the raiser wins, None values are skipped")


def test_response_for_lifecycle_error():
    print("\nTesting lifecycle error response")
    print("-" * 40)

    handler = ErrorHandler()
    response = handler.to_response(NotRestorable("Project 'alpha' cannot be restored", context={"project": "alpha"}))
    data = response.to_dict()

    assert data["error"] == "NotRestorable"
    assert data["error_code"] == "NOT_RESTORABLE"
    assert data["category"] == "lifecycle"
    assert data["context"] == {"project": "alpha"}
    assert data["resolution_steps"], "guidance expected"
    assert "backend_output" not in data
    print("  ✓ lifecycle errors carry code, context and guidance")


def test_response_keeps_backend_output_verbatim():
    print("\nTesting backend output passthrough")
    print("-" * 40)

    raw = "svn: E170013: Unable to connect to a repository at URL 'https://x'\nsvn: E000111: Connection refused\n"
    error = BackendUnavailable("svn checkout failed", operation="checkout", command="svn checkout https://x", output=raw)
    data = error_handler.to_response(error).to_dict()
    assert data["backend_output"] == raw
    assert data["context"]["operation"] == "checkout"
    assert any("network" in step for step in data["resolution_steps"])
    print("  ✓ svn output is returned unchanged")

    orphaned = Orphaned("Project 'alpha' is orphaned", cause=Conflict("svn delete failed", output="svn: E160028: out of date"))
    data = error_handler.to_response(orphaned).to_dict()
    assert data["category"] == "orphaned"
    assert data["backend_output"] == "svn: E160028: out of date"
    print("  ✓ orphaned responses expose the underlying backend output")


def test_resolution_steps_follow_hierarchy():
    print("\nTesting resolution step lookup")
    print("-" * 40)

    class CustomBackendError(BackendError):
        error_code = "CUSTOM"

    steps = ErrorHandler().resolution_steps_for(CustomBackendError("odd"))
    assert steps == ErrorHandler().resolution_steps_for(BackendError("plain"))
    print("  ✓ unknown subclasses fall back to their parent's guidance")


def test_unexpected_errors_and_logging():
    print("\nTesting unexpected errors and log levels")
    print("-" * 40)

    records = []

    class Collector(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = logging.getLogger('svnws.error_handler')
    collector = Collector()
    logger.addHandler(collector)
    previous_level = logger.level
    logger.setLevel(logging.DEBUG)
    try:
        handler = ErrorHandler()
        data = handler.to_response(RuntimeError("boom")).to_dict()
        assert data["error_code"] == "UNEXPECTED_ERROR"
        assert data["category"] == "unexpected"
        assert data["message"] == "boom"
        print("  ✓ non-workspace exceptions become UNEXPECTED_ERROR")

        records.clear()
        handler.to_response(InvalidReference("bad name"))
        handler.to_response(StateStoreError("broken"))
        assert [r.levelno for r in records] == [logging.WARNING, logging.ERROR]
        print("  ✓ user mistakes log as warnings, failures as errors")
    finally:
        logger.removeHandler(collector)
        logger.setLevel(previous_level)


def test_success_response():
    print("\nTesting success response")
    print("-" * 40)

    response = error_handler.create_success_response("checkout", {"project": "alpha"})
    assert response["success"] is True
    assert response["operation"] == "checkout"
    assert response["data"] == {"project": "alpha"}
    assert "timestamp" in response
    print("  ✓ success responses share the envelope shape")


def run_all_tests():
    """Run all error handling tests."""
    print("Error Handling Test Suite")
    print("=" * 50)

    tests = [
        test_error_codes_and_categories,
        test_add_context_does_not_overwrite,
        test_response_for_lifecycle_error,
        test_response_keeps_backend_output_verbatim,
        test_resolution_steps_follow_hierarchy,
        test_unexpected_errors_and_logging,
        test_success_response,
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
