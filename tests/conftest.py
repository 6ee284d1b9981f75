"""Shared pytest fixtures for s3drive tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
collectors in the global prometheus_client registry).

The object store and Drive are installed on the app manually for every
test instead of running the lifespan, so each test starts from an empty
in-memory bucket.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from s3drive.config import (
    DriveConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
    UploadConfig,
)
from s3drive.drive import Drive
from s3drive.oplog import FileOperationLog
from s3drive.server import create_app
from s3drive.storage.memory import MemoryBucketStore

BOUNDARY = "s3drive-test-boundary"
MULTIPART_CONTENT_TYPE = f"multipart/form-data; boundary={BOUNDARY}"


def build_multipart(*parts: tuple[str, str | None, bytes], boundary: str = BOUNDARY) -> bytes:
    """Encode (field_name, filename, data) tuples as a multipart body.

    A filename of None produces a plain form field.
    """
    body = b""
    for name, filename, data in parts:
        disposition = f'form-data; name="{name}"'
        if filename is not None:
            disposition += f'; filename="{filename}"'
        body += f"--{boundary}\r\nContent-Disposition: {disposition}\r\n".encode()
        if filename is not None:
            body += b"Content-Type: application/octet-stream\r\n"
        body += b"\r\n" + data + b"\r\n"
    body += f"--{boundary}--\r\n".encode()
    return body


async def iter_chunks(data: bytes, size: int = 7):
    """Yield ``data`` in small chunks to exercise incremental parsing."""
    for offset in range(0, len(data), size):
        yield data[offset : offset + size]


class RecordingLog:
    """In-memory OperationLog that keeps every appended message."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def append(self, message: str) -> None:
        self.lines.append(message)


@pytest.fixture(scope="session")
def config() -> DriveConfig:
    """Create a test DriveConfig backed by the memory store."""
    return DriveConfig(
        server=ServerConfig(host="127.0.0.1", port=8090, operation_log="/tmp/s3drive-test-logs"),
        storage=StorageConfig(backend="memory"),
        upload=UploadConfig(idle_timeout_seconds=2.0),
        observability=ObservabilityConfig(metrics=True, health_check=True),
    )


@pytest.fixture(scope="session")
def app(config: DriveConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
def oplog() -> RecordingLog:
    return RecordingLog()


@pytest.fixture
def store() -> MemoryBucketStore:
    return MemoryBucketStore()


@pytest.fixture
def drive(store: MemoryBucketStore, oplog: RecordingLog, config: DriveConfig) -> Drive:
    return Drive(store, oplog, config.upload)


@pytest.fixture
async def client(app, store, tmp_path, config) -> AsyncClient:
    """Create an async test client for the s3drive app.

    Installs a fresh memory store, a file-backed operation log under
    tmp_path, and the Drive facade on app.state (the lifespan context
    doesn't auto-run with ASGITransport).
    """
    oplog = FileOperationLog(tmp_path / "logs")
    oplog.open()
    app.state.store = store
    app.state.oplog = oplog
    app.state.drive = Drive(store, oplog, config.upload)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    oplog.close()
