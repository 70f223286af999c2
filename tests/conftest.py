"""Shared fixtures: an in-memory SFTP client standing in for the remote machine."""

import threading
import time
from unittest.mock import Mock

import pytest

from machine_sync.engine import SyncEngine
from machine_sync.errors import ErrorSink
from machine_sync.session import RemoteSession


class FakeRemoteFile:
    """Writable remote file handle returned by FakeSFTPClient.open."""

    def __init__(self, client, path):
        self._client = client
        self.path = path
        self.closed = False

    def write(self, data):
        self._client._record("write", self.path)
        self._client._maybe_fail("write")
        if self._client.write_delay:
            time.sleep(self._client.write_delay)
        self._client.files[self.path] += bytes(data)

    def close(self):
        self.closed = True


class FakeSFTPClient:
    """Keeps remote files in a dict and records every call in order."""

    def __init__(self):
        self.files = {}
        self.calls = []
        self.failures = {}
        self.write_delay = 0.0
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, op, path):
        with self._lock:
            self.calls.append((op, path, threading.get_ident()))

    def _maybe_fail(self, op):
        exc = self.failures.get(op)
        if exc is not None:
            raise exc

    def ops(self):
        return [(op, path) for op, path, _ in self.calls]

    def remove(self, path):
        self._record("remove", path)
        self._maybe_fail("remove")
        if path not in self.files:
            raise FileNotFoundError(2, "No such file", path)
        del self.files[path]

    def open(self, path, mode="r"):
        self._record("create", path)
        self._maybe_fail("create")
        self.files[path] = b""
        return FakeRemoteFile(self, path)

    def close(self):
        self.closed = True


@pytest.fixture
def sftp():
    """The fake remote machine."""
    return FakeSFTPClient()


@pytest.fixture
def session(sftp):
    """A RemoteSession over the fake client."""
    return RemoteSession(sftp)


@pytest.fixture
def error_sink():
    """Error sink double that remembers reported failures."""
    return Mock(spec=ErrorSink)


@pytest.fixture
def src(tmp_path):
    """Local watch root."""
    root = tmp_path / "src"
    root.mkdir()
    return root


@pytest.fixture
def engine(session, src, error_sink):
    """Sync engine syncing *src* to /dest on the fake machine."""
    eng = SyncEngine(session, str(src), "/dest", error_sink, max_workers=4)
    yield eng
    eng.shutdown(wait=True)
