"""Tests for the sync engine."""

from concurrent.futures import wait

import pytest

from machine_sync.engine import SyncEngine, remote_path_for
from machine_sync.errors import SyncFailure
from machine_sync.events import ChangeEvent, ChangeKind


def reported_failures(error_sink):
    return [call.args[0] for call in error_sink.report.call_args_list]


class TestRemotePath:
    """Test mapping local paths onto the remote machine."""

    def test_joins_with_forward_slash(self):
        assert remote_path_for("/dest", "notes.txt") == "/dest/notes.txt"

    def test_keeps_subdirectories(self):
        assert remote_path_for("/srv/app", "lib/util.py") == "/srv/app/lib/util.py"

    def test_engine_remote_path(self, engine):
        event = ChangeEvent("a.txt", ChangeKind.MODIFIED)
        assert engine.remote_path(event) == "/dest/a.txt"


class TestDelete:
    """Test handling of deleted files."""

    def test_delete_issues_single_remove(self, engine, sftp, error_sink):
        """Test a delete removes the mapped path and nothing else."""
        sftp.files["/dest/old.txt"] = b"stale"

        assert engine.handle(ChangeEvent("old.txt", ChangeKind.DELETED)) is True

        assert sftp.ops() == [("remove", "/dest/old.txt")]
        assert "/dest/old.txt" not in sftp.files
        error_sink.report.assert_not_called()
        assert engine.stats.total_deleted == 1

    def test_delete_failure_is_reported(self, engine, sftp, error_sink):
        """Test a failed remote remove yields exactly one failure."""
        event = ChangeEvent("missing.txt", ChangeKind.DELETED)

        assert engine.handle(event) is False

        assert sftp.ops() == [("remove", "/dest/missing.txt")]
        failures = reported_failures(error_sink)
        assert len(failures) == 1
        assert isinstance(failures[0], SyncFailure)
        assert failures[0].event == event
        assert failures[0].kind == "FileNotFoundError"
        assert "remove /dest/missing.txt" in failures[0].message
        assert engine.stats.total_failed == 1


class TestUpload:
    """Test handling of created, modified and renamed files."""

    @pytest.mark.parametrize(
        "kind", [ChangeKind.CREATED, ChangeKind.MODIFIED, ChangeKind.RENAMED]
    )
    def test_upload_writes_full_content(self, engine, sftp, src, error_sink, kind):
        """Test every non-delete kind overwrites the remote file."""
        (src / "a.txt").write_bytes(b"fresh content")
        sftp.files["/dest/a.txt"] = b"old content that is longer"

        assert engine.handle(ChangeEvent("a.txt", kind)) is True

        assert sftp.files["/dest/a.txt"] == b"fresh content"
        assert sftp.ops() == [
            ("remove", "/dest/a.txt"),
            ("create", "/dest/a.txt"),
            ("write", "/dest/a.txt"),
        ]
        error_sink.report.assert_not_called()

    def test_binary_content_is_preserved(self, engine, sftp, src):
        payload = bytes(range(256)) * 16
        (src / "blob.bin").write_bytes(payload)

        engine.handle(ChangeEvent("blob.bin", ChangeKind.CREATED))

        assert sftp.files["/dest/blob.bin"] == payload
        assert engine.stats.total_bytes == len(payload)

    def test_missing_remote_file_is_not_an_error(self, engine, sftp, src, error_sink):
        """Test the pre-create remove failing does not stop the upload."""
        (src / "new.txt").write_text("hello")
        assert "/dest/new.txt" not in sftp.files

        assert engine.handle(ChangeEvent("new.txt", ChangeKind.CREATED)) is True

        assert sftp.files["/dest/new.txt"] == b"hello"
        assert ("remove", "/dest/new.txt") in sftp.ops()
        error_sink.report.assert_not_called()

    def test_unreadable_local_file_touches_nothing_remote(
        self, engine, sftp, error_sink
    ):
        """Test a vanished local file reports one failure and makes no remote call."""
        event = ChangeEvent("gone.txt", ChangeKind.MODIFIED)

        assert engine.handle(event) is False

        assert sftp.calls == []
        failures = reported_failures(error_sink)
        assert len(failures) == 1
        assert failures[0].event == event
        assert "open" in failures[0].message

    def test_create_failure_is_reported(self, engine, sftp, src, error_sink):
        (src / "a.txt").write_text("x")
        sftp.failures["create"] = PermissionError(13, "Permission denied")

        assert engine.handle(ChangeEvent("a.txt", ChangeKind.CREATED)) is False

        assert ("write", "/dest/a.txt") not in sftp.ops()
        failures = reported_failures(error_sink)
        assert len(failures) == 1
        assert failures[0].kind == "PermissionError"
        assert failures[0].message.startswith("create /dest/a.txt failed")

    def test_write_failure_is_reported(self, engine, sftp, src, error_sink):
        (src / "a.txt").write_text("x")
        sftp.failures["write"] = OSError("connection lost")

        assert engine.handle(ChangeEvent("a.txt", ChangeKind.MODIFIED)) is False

        failures = reported_failures(error_sink)
        assert len(failures) == 1
        assert failures[0].message.startswith("write /dest/a.txt failed")
        assert engine.stats.total_uploaded == 0

    def test_idempotent_modify(self, engine, sftp, src):
        """Test handling the same modify twice leaves identical bytes."""
        (src / "a.txt").write_text("same")
        event = ChangeEvent("a.txt", ChangeKind.MODIFIED)

        engine.handle(event)
        first = sftp.files["/dest/a.txt"]
        engine.handle(event)

        assert sftp.files["/dest/a.txt"] == first == b"same"

    def test_subdirectory_path(self, session, sftp, tmp_path, error_sink):
        root = tmp_path / "root"
        (root / "lib").mkdir(parents=True)
        (root / "lib" / "mod.py").write_text("print(1)\n")
        engine = SyncEngine(session, str(root), "/srv", error_sink, max_workers=1)
        try:
            engine.handle(ChangeEvent("lib/mod.py", ChangeKind.CREATED))
        finally:
            engine.shutdown()

        assert sftp.files["/srv/lib/mod.py"] == b"print(1)\n"

    def test_unexpected_error_is_reported(self, engine, src, sftp, error_sink):
        (src / "a.txt").write_text("x")
        sftp.failures["create"] = ValueError("bad handle")

        assert engine.handle(ChangeEvent("a.txt", ChangeKind.CREATED)) is False

        failures = reported_failures(error_sink)
        assert len(failures) == 1
        assert failures[0].kind == "ValueError"


class TestConcurrency:
    """Test dispatching events to the worker pool."""

    def test_dispatch_returns_future(self, engine, src, sftp):
        (src / "a.txt").write_text("A")

        future = engine.dispatch(ChangeEvent("a.txt", ChangeKind.CREATED))

        assert future.result(timeout=5) is True
        assert sftp.files["/dest/a.txt"] == b"A"

    def test_concurrent_events_keep_their_content(self, engine, src, sftp):
        """Test simultaneous uploads of different files both land intact."""
        (src / "a.txt").write_text("contents of a")
        (src / "b.txt").write_text("contents of b")
        sftp.write_delay = 0.02

        futures = [
            engine.dispatch(ChangeEvent("a.txt", ChangeKind.CREATED)),
            engine.dispatch(ChangeEvent("b.txt", ChangeKind.CREATED)),
        ]
        wait(futures, timeout=10)

        assert all(f.result() for f in futures)
        assert sftp.files["/dest/a.txt"] == b"contents of a"
        assert sftp.files["/dest/b.txt"] == b"contents of b"

    def test_remote_calls_are_not_interleaved(self, engine, src, sftp):
        """Test each event's remove/create/write run back to back."""
        names = [f"f{i}.txt" for i in range(12)]
        for name in names:
            (src / name).write_text(name * 3)
        sftp.write_delay = 0.005

        futures = [
            engine.dispatch(ChangeEvent(name, ChangeKind.MODIFIED)) for name in names
        ]
        wait(futures, timeout=30)

        calls = sftp.calls
        assert len(calls) == 3 * len(names)
        for i in range(0, len(calls), 3):
            group = calls[i:i + 3]
            assert [op for op, _, _ in group] == ["remove", "create", "write"]
            assert len({path for _, path, _ in group}) == 1
            assert len({tid for _, _, tid in group}) == 1
        for name in names:
            assert sftp.files[f"/dest/{name}"] == (name * 3).encode()

    def test_out_of_order_handling_can_diverge(self, engine, src, sftp):
        """Events are not ordered: a delete handled after a recreate wins."""
        (src / "n.txt").write_text("v2")
        sftp.files["/dest/n.txt"] = b"v1"

        # Local history: deleted, then recreated. Handled in reverse.
        engine.handle(ChangeEvent("n.txt", ChangeKind.CREATED))
        engine.handle(ChangeEvent("n.txt", ChangeKind.DELETED))

        assert (src / "n.txt").exists()
        assert "/dest/n.txt" not in sftp.files

    def test_shutdown_waits_for_queued_events(self, session, src, sftp, error_sink):
        engine = SyncEngine(session, str(src), "/dest", error_sink, max_workers=1)
        for i in range(5):
            (src / f"{i}.txt").write_text(str(i))
            engine.dispatch(ChangeEvent(f"{i}.txt", ChangeKind.CREATED))

        engine.shutdown(wait=True)

        assert len(sftp.files) == 5
        assert engine.stats.total_uploaded == 5
        assert "5 uploaded" in engine.stats.summary()


class TestEndToEnd:
    """Test the notes.txt create-then-delete scenario."""

    def test_create_then_delete(self, engine, src, sftp, error_sink):
        notes = src / "notes.txt"
        notes.write_text("hello")
        assert engine.handle(ChangeEvent("notes.txt", ChangeKind.CREATED))
        assert sftp.files["/dest/notes.txt"] == b"hello"

        notes.unlink()
        assert engine.handle(ChangeEvent("notes.txt", ChangeKind.DELETED))
        assert "/dest/notes.txt" not in sftp.files
        error_sink.report.assert_not_called()
