import io
import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest

from storage_service.client import CloudStorage
from storage_service.src.schemas import RawEntry, SaveOptions

BUCKET = "gcs-client-lib-testing"

VALID_CONFIG = {"project_id": "test-project", "key_filename": "/tmp/key.json"}


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeSink:
    """Upload sink that commits into FakeProvider.objects on close()."""

    def __init__(self, provider: "FakeProvider", path: str, options: SaveOptions, fail_with: Optional[BaseException] = None):
        self._provider = provider
        self._path = path
        self._options = options
        self._fail_with = fail_with
        self._buf = io.BytesIO()
        self.closed = False
        self.committed = False
        self.aborted = False

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed sink")
        if self._fail_with is not None:
            raise self._fail_with
        return self._buf.write(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.committed = True
        self._provider.commit(self._path, self._buf.getvalue(), self._options)

    def abort(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.aborted = True


class FakeProvider:
    def __init__(self, bucket: str = BUCKET):
        self.bucket = bucket
        self.objects: Dict[str, Tuple[bytes, SaveOptions]] = {}
        self.sinks: List[FakeSink] = []
        self.failing_uploads: List[BaseException] = []
        self.failing_downloads: List[BaseException] = []
        self.list_queries: List[Tuple[str, Dict[str, Any]]] = []
        self.calls: Dict[str, int] = {"open_upload": 0, "download": 0, "list": 0, "delete": 0}
        self._lock = threading.Lock()

    def commit(self, path: str, data: bytes, options: SaveOptions) -> None:
        with self._lock:
            self.objects[path] = (data, options)

    def open_upload(self, path: str, options: SaveOptions) -> FakeSink:
        self.calls["open_upload"] += 1
        fail_with = self.failing_uploads.pop(0) if self.failing_uploads else None
        sink = FakeSink(self, path, options, fail_with=fail_with)
        self.sinks.append(sink)
        return sink

    def download(self, path: str) -> bytes:
        self.calls["download"] += 1
        if self.failing_downloads:
            raise self.failing_downloads.pop(0)
        if path not in self.objects:
            raise FileNotFoundError(f"No such object: {self.bucket}/{path}")
        return self.objects[path][0]

    def list(self, prefix: str, query: Optional[Dict[str, Any]] = None) -> List[RawEntry]:
        self.calls["list"] += 1
        self.list_queries.append((prefix, dict(query or {})))
        return [
            RawEntry(
                name=name,
                envelope={"name": name, "size": len(data), "contentType": opts.content_type, "metadata": dict(opts.metadata)},
            )
            for name, (data, opts) in sorted(self.objects.items())
            if name.startswith(prefix)
        ]

    def delete(self, path: str) -> bool:
        self.calls["delete"] += 1
        with self._lock:
            return self.objects.pop(path, None) is not None

    def public_url(self, path: str) -> str:
        return f"https://{self.bucket}.storage.googleapis.com/{path}"


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def log_events():
    events: List[Tuple[str, Dict[str, Any]]] = []

    def _log(event: str, **fields: Any) -> None:
        events.append((event, fields))

    return events, _log


@pytest.fixture
def log_messages():
    """One-argument sink, the shape of print or logger.info."""
    messages: List[str] = []
    return messages, messages.append


@pytest.fixture
def gcs(provider, log_messages):
    _, log = log_messages
    options = {
        "bucket": BUCKET,
        "logging_function": log,
        "retries_count": 3,
        "retry_interval": 1,
        "max_retry_timeout": 2000,
    }
    return CloudStorage(VALID_CONFIG, options, provider=provider)
