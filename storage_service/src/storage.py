import gzip
import shutil
import tempfile
import threading
from typing import Any, Dict, List, Mapping, Optional

from google.api_core import exceptions as gax_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from ..common.log_calls import log_calls
from .schemas import GcsCredentials, RawEntry, SaveOptions

TOKEN_URI = "https://oauth2.googleapis.com/token"
SPOOL_MAX_BYTES = 8 * 1024 * 1024

def build_client(creds: GcsCredentials) -> storage.Client:
    if creds.key_filename:
        return storage.Client.from_service_account_json(creds.key_filename, project=creds.project_id)
    info = {
        "type": "service_account",
        "project_id": creds.project_id,
        "client_email": creds.credentials.client_email, # type: ignore
        "private_key": creds.credentials.private_key, # type: ignore
        "token_uri": TOKEN_URI,
    }
    sa_creds = service_account.Credentials.from_service_account_info(info)
    return storage.Client(project=creds.project_id, credentials=sa_creds)

def public_url(bucket: str, path: str) -> str:
    return f"https://{bucket}.storage.googleapis.com/{path}"

def blob_envelope(blob: Any) -> Dict[str, Any]:
    """Provider metadata of a listed blob, keyed like the JSON API resource."""
    updated = getattr(blob, "updated", None)
    created = getattr(blob, "time_created", None)
    return {
        "name": blob.name,
        "bucket": getattr(getattr(blob, "bucket", None), "name", None),
        "size": blob.size,
        "contentType": blob.content_type,
        "contentEncoding": blob.content_encoding,
        "md5Hash": blob.md5_hash,
        "crc32c": blob.crc32c,
        "etag": blob.etag,
        "generation": blob.generation,
        "updated": updated.isoformat() if updated else None,
        "timeCreated": created.isoformat() if created else None,
        "metadata": dict(blob.metadata or {}),
    }


class BlobUploadSink:
    """
    Writable end of one upload attempt.

    Bytes are spooled locally and sent in a single request when the sink is
    closed, so an aborted attempt never leaves a partial object behind.
    """

    def __init__(self, blob: Any, options: SaveOptions, spool_max_bytes: int = SPOOL_MAX_BYTES):
        self._blob = blob
        self._options = options
        self._buffer = tempfile.SpooledTemporaryFile(max_size=spool_max_bytes)
        self._lock = threading.Lock()
        self._state = "open"  # open -> committing -> closed | aborted

    @property
    def closed(self) -> bool:
        return self._state != "open"

    @property
    def state(self) -> str:
        return self._state

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        if self._state != "open":
            raise ValueError(f"write to {self._state} upload sink")
        return self._buffer.write(data)

    def flush(self) -> None:
        if self._state == "open":
            self._buffer.flush()

    def close(self) -> None:
        with self._lock:
            if self._state != "open":
                return
            self._state = "committing"
        try:
            self._commit()
        finally:
            with self._lock:
                self._state = "closed"
            self._buffer.close()

    def abort(self) -> None:
        with self._lock:
            if self._state != "open":
                # a commit already in flight is left to finish
                return
            self._state = "aborted"
        self._buffer.close()

    def _commit(self) -> None:
        opts = self._options
        self._buffer.seek(0)
        payload = self._buffer
        if opts.compress:
            payload = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES)
            with gzip.GzipFile(fileobj=payload, mode="wb") as gz:
                shutil.copyfileobj(self._buffer, gz)
            payload.seek(0)
            self._blob.content_encoding = "gzip"
        self._blob.metadata = dict(opts.metadata)
        try:
            self._blob.upload_from_file(
                payload,
                rewind=True,
                content_type=opts.content_type,
                predefined_acl="publicRead" if opts.public else None,
                checksum="crc32c",
                retry=None,
            )
        finally:
            if payload is not self._buffer:
                payload.close()


class GcsBucketClient:
    """The storage collaborator: upload, download, list, delete on one bucket."""

    def __init__(self, credentials: Optional[GcsCredentials], bucket: str, client: Optional[storage.Client] = None):
        if client is None:
            if credentials is None:
                raise ValueError("credentials are required when no client is given")
            client = build_client(credentials)
        self._client = client
        self.bucket_name = bucket
        self._bucket = client.bucket(bucket)

    def open_upload(self, path: str, options: SaveOptions) -> BlobUploadSink:
        return BlobUploadSink(self._bucket.blob(path), options)

    @log_calls("gcs.download")
    def download(self, path: str) -> bytes:
        return self._bucket.blob(path).download_as_bytes(retry=None)

    @log_calls("gcs.list")
    def list(self, prefix: str, query: Optional[Mapping[str, Any]] = None) -> List[RawEntry]:
        blobs = self._client.list_blobs(self._bucket, prefix=prefix or None, **dict(query or {}))
        return [RawEntry(name=blob.name, envelope=blob_envelope(blob)) for blob in blobs]

    @log_calls("gcs.delete")
    def delete(self, path: str) -> bool:
        try:
            self._bucket.blob(path).delete(retry=None)
        except gax_exceptions.NotFound:
            return False
        return True

    def public_url(self, path: str) -> str:
        return public_url(self.bucket_name, path)
