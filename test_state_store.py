#!/usr/bin/env python3
"""
Tests for the workspace state store.

Covers entry CRUD, lifecycle transitions, the current project, persistence
across reloads, the on-disk format and corruption handling.
"""

import json
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from svnws.config import Config
from svnws.errors import AlreadyActive, NotActive, NotRestorable, StateStoreError
from svnws.file_lock import FileLock
from svnws.state import EntryKey, ProjectState, STATE_VERSION, WorkspaceEntry, WorkspaceStateStore


def make_store(temp_dir: str) -> WorkspaceStateStore:
    return WorkspaceStateStore.from_config(Config(home_dir=Path(temp_dir)))


def make_entry(project: str, branch: str = "trunk", repository: str = "main") -> WorkspaceEntry:
    key = EntryKey(repository, project)
    return WorkspaceEntry(key=key, path=Path("/work") / repository / project, branch=branch)


def test_put_get_and_order():
    print("Testing put/get/list_entries")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        store = make_store(temp_dir)
        assert store.get(EntryKey("main", "alpha")) is None
        assert store.list_entries("main") == []
        print("  ✓ empty store has no entries")

        for name in ["charlie", "alpha", "bravo"]:
            store.put(EntryKey("main", name), make_entry(name))
        store.put(EntryKey("other", "delta"), make_entry("delta", repository="other"))

        assert [e.project for e in store.list_entries("main")] == ["charlie", "alpha", "bravo"]
        assert [e.project for e in store.list_entries()] == ["charlie", "alpha", "bravo", "delta"]
        print("  ✓ entries come back in insertion order, scoped per repository")

        store.put(EntryKey("main", "alpha"), make_entry("alpha", branch="feature"))
        assert [e.project for e in store.list_entries("main")] == ["charlie", "alpha", "bravo"]
        assert store.get(EntryKey("main", "alpha")).branch == "feature"
        print("  ✓ upsert keeps the original position")


def test_persistence_and_format():
    print("\nTesting persistence")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        store = make_store(temp_dir)
        key = EntryKey("main", "alpha")
        store.put(key, make_entry("alpha", branch="rel"), make_current=True)

        reloaded = make_store(temp_dir)
        entry = reloaded.get(key)
        assert entry.branch == "rel" and entry.state is ProjectState.ACTIVE
        assert entry.path == Path("/work/main/alpha")
        assert reloaded.get_current("main") == "alpha"
        print("  ✓ a new store instance sees the persisted entries")

        document = json.loads(store.state_file.read_text())
        assert document["version"] == STATE_VERSION
        record = document["repositories"]["main"]["projects"]["alpha"]
        assert set(record) == {"path", "branch", "state", "updated_at"}
        assert record["state"] == "active"
        assert document["repositories"]["main"]["current"] == "alpha"
        print("  ✓ on-disk document has the documented shape")

        store.put(EntryKey("main", "beta"), make_entry("beta"))
        backup = json.loads(store.backup_file.read_text())
        assert "beta" not in backup["repositories"]["main"]["projects"]
        assert not list(store.state_file.parent.glob("*.tmp"))
        print("  ✓ previous document kept as backup, no temp files left behind")


def test_soft_delete_and_restore():
    print("\nTesting soft delete and restore")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        store = make_store(temp_dir)
        key = EntryKey("main", "alpha")
        store.put(key, make_entry("alpha", branch="feature"), make_current=True)

        deleted = store.mark_soft_deleted(key)
        assert deleted.state is ProjectState.SOFT_DELETED
        assert store.get_current("main") is None
        print("  ✓ soft delete keeps the entry and clears the current project")

        try:
            store.mark_soft_deleted(key)
        except NotActive:
            print("  ✓ soft deleting twice raises NotActive")
        else:
            raise AssertionError("expected NotActive")

        restored = store.restore(key)
        assert restored.state is ProjectState.ACTIVE
        assert (restored.path, restored.branch) == (Path("/work/main/alpha"), "feature")
        assert store.get_current("main") == "alpha"
        print("  ✓ restore brings back the same path and branch")

        try:
            store.restore(key)
        except AlreadyActive:
            print("  ✓ restoring an active project raises AlreadyActive")
        else:
            raise AssertionError("expected AlreadyActive")


def test_hard_delete_orphan_and_remove():
    print("\nTesting hard delete, orphaned and remove")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        store = make_store(temp_dir)
        key = EntryKey("main", "alpha")

        try:
            store.restore(key)
        except NotRestorable:
            print("  ✓ restoring an unknown project raises NotRestorable")
        else:
            raise AssertionError("expected NotRestorable")

        store.put(key, make_entry("alpha"))
        store.mark_hard_deleted(key)
        assert store.get(key) is None
        try:
            store.restore(key)
        except NotRestorable:
            print("  ✓ hard-deleted projects cannot be restored")
        else:
            raise AssertionError("expected NotRestorable")

        store.put(key, make_entry("alpha"), make_current=True)
        orphaned = store.mark_orphaned(key)
        assert orphaned.state is ProjectState.ORPHANED
        assert store.get_current("main") is None
        try:
            store.restore(key)
        except NotRestorable:
            print("  ✓ orphaned projects cannot be restored")
        else:
            raise AssertionError("expected NotRestorable")

        try:
            store.remove(key)
        except NotActive:
            print("  ✓ remove requires an active entry")
        else:
            raise AssertionError("expected NotActive")

        store.put(key, make_entry("alpha"), make_current=True)
        store.remove(key)
        assert store.get(key) is None and store.get_current("main") is None
        print("  ✓ remove purges the entry and clears the current project")


def test_set_current():
    print("\nTesting current project")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        store = make_store(temp_dir)
        store.put(EntryKey("main", "alpha"), make_entry("alpha"))
        store.set_current("main", "alpha")
        assert store.get_current("main") == "alpha"
        assert store.get_current("other") is None

        try:
            store.set_current("main", "ghost")
        except NotActive:
            print("  ✓ only active projects can become current")
        else:
            raise AssertionError("expected NotActive")

        store.set_current("main", None)
        assert store.get_current("main") is None
        print("  ✓ current project can be cleared")


def test_corrupt_state_is_reported():
    print("\nTesting corrupt state handling")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        store = make_store(temp_dir)
        store.put(EntryKey("main", "alpha"), make_entry("alpha"))
        store.put(EntryKey("main", "beta"), make_entry("beta"))

        store.state_file.write_text("{ not json")
        for call in (lambda: store.get(EntryKey("main", "alpha")),
                     lambda: store.put(EntryKey("main", "gamma"), make_entry("gamma"))):
            try:
                call()
            except StateStoreError as e:
                assert str(store.backup_file) in e.message
            else:
                raise AssertionError("expected StateStoreError")
        assert store.state_file.read_text() == "{ not json"
        print("  ✓ unparseable state raises StateStoreError naming the backup and is never reset")

        store.state_file.write_text(json.dumps({"version": 99, "repositories": {}}))
        try:
            store.list_entries("main")
        except StateStoreError:
            print("  ✓ unknown format versions are rejected")
        else:
            raise AssertionError("expected StateStoreError")


def test_lock_timeout_becomes_state_error():
    print("\nTesting lock contention")
    print("-" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        config = Config(home_dir=Path(temp_dir), lock_timeout=0.2)
        store = WorkspaceStateStore.from_config(config)
        blocker = FileLock(store.lock.lock_file_path, timeout=1.0)
        with blocker:
            try:
                store.put(EntryKey("main", "alpha"), make_entry("alpha"))
            except StateStoreError as e:
                assert "locked" in e.message
            else:
                raise AssertionError("expected StateStoreError")
        assert store.get(EntryKey("main", "alpha")) is None
        print("  ✓ a held lock surfaces as StateStoreError without writing")


def run_all_tests():
    """Run all state store tests."""
    print("Workspace State Store Test Suite")
    print("=" * 50)

    tests = [
        test_put_get_and_order,
        test_persistence_and_format,
        test_soft_delete_and_restore,
        test_hard_delete_orphan_and_remove,
        test_set_current,
        test_corrupt_state_is_reported,
        test_lock_timeout_becomes_state_error,
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
