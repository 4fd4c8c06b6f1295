import functools
import io
from typing import Any, BinaryIO, Callable, List, Mapping, Optional, Protocol, Sequence, Union

from anyio import to_thread
from pydantic import ValidationError

from .common.log_calls import log_calls
from .otel import init_tracing
from .src.config import Settings, settings as default_settings
from .src.exceptions import InvalidConfigurationError, StorageError, TransferError
from .src.logging import jlog, message_sink
from .src.normalize import coerce_deleted, decode_buffer, decode_json, normalize_listing
from .src.pipe import PipeCoordinator, pipe_into
from .src.retry import RetryOrchestrator, RetryPolicy
from .src.schemas import GcsCredentials, RawEntry, ReadOptions, RemoteEntry, SaveOptions, StorageOptions
from .src.storage import GcsBucketClient
from .src.streams import ByteSource

CONFIG_ERROR = (
    "Configuration object is invalid, please verify that object has `project_id` "
    "and either `key_filename` or `credentials` fields."
)


class StorageProvider(Protocol):
    """What CloudStorage needs from the remote side. GcsBucketClient is the real one."""

    def open_upload(self, path: str, options: SaveOptions) -> BinaryIO: ...
    def download(self, path: str) -> bytes: ...
    def list(self, prefix: str, query: Optional[Mapping[str, Any]] = None) -> Sequence[RawEntry]: ...
    def delete(self, path: str) -> bool: ...
    def public_url(self, path: str) -> str: ...


def _coerce(model: type, value: Any, error: str) -> Any:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(dict(value or {}))
    except (ValidationError, TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"{error} ({e})") from e


class CloudStorage:
    """
    Google Cloud Storage wrapper that retries every remote operation.

    Each public call is one logical call: up to ``retries_count`` attempts,
    each raced against ``max_retry_timeout`` milliseconds, with
    ``retry_interval`` milliseconds between attempts. Callers only ever see
    InvalidConfigurationError, UnsupportedInputTypeError or
    RetryExhaustedError.
    """

    def __init__(
        self,
        config: Union[GcsCredentials, Mapping[str, Any], None],
        options: Union[StorageOptions, Mapping[str, Any], None] = None,
        *,
        provider: Optional[StorageProvider] = None,
        client: Any = None,
    ):
        self.credentials: GcsCredentials = _coerce(GcsCredentials, config, CONFIG_ERROR)
        self.options: StorageOptions = _coerce(StorageOptions, options, "Options object is invalid")
        self.bucket = self.options.bucket
        self.policy = RetryPolicy.from_options(self.options)
        # a user logging_function takes one message string, like print or logger.info
        user_log = self.options.logging_function
        self.log: Callable[..., None] = message_sink(user_log) if user_log else jlog
        self._orchestrator = RetryOrchestrator(log=self.log)
        self._provider: StorageProvider = provider or GcsBucketClient(self.credentials, self.bucket, client=client)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "CloudStorage":
        s = settings or default_settings
        config: dict = {"project_id": s.project_id, "key_filename": s.key_filename}
        if s.client_email or s.private_key:
            config["credentials"] = {"client_email": s.client_email, "private_key": s.private_key}
        options = {
            "bucket": s.bucket,
            "retries_count": s.retries_count,
            "retry_interval": s.retry_interval_ms,
            "max_retry_timeout": s.max_retry_timeout_ms,
        }
        if s.tracing_enabled:
            init_tracing(s.service_name, use_cloud_trace=s.use_cloud_trace)
        return cls(config, options, **kwargs)

    async def _remote(self, fn: Callable[..., Any], *args: Any) -> Any:
        # provider calls block; run them off the event loop
        try:
            return await to_thread.run_sync(functools.partial(fn, *args), abandon_on_cancel=True)
        except StorageError:
            raise
        except Exception as e:
            raise TransferError(f"{getattr(fn, '__name__', 'provider call')} failed: {e}") from e

    @log_calls("storage.save")
    async def save(self, path: str, data: Any, options: Union[SaveOptions, Mapping[str, Any], None] = None) -> Union[str, bool]:
        """
        Upload ``data`` to ``path``.

        ``data`` may be bytes, a JSON-serializable value, a local file path,
        a readable binary stream or an explicit ByteSource. Returns the public
        URL when ``options.get_url`` is set, else ``True``.
        """
        opts: SaveOptions = _coerce(SaveOptions, options, "Save options are invalid")
        source = ByteSource.of(data)
        result: Union[str, bool] = self._provider.public_url(path) if opts.get_url else True
        pipe = PipeCoordinator(source, lambda: self._provider.open_upload(path, opts), label=path, log=self.log)
        try:
            return await self._orchestrator.execute(
                lambda: pipe.transfer(result), self.policy, cleanup=pipe.abort, name="save"
            )
        finally:
            pipe.abort()

    @log_calls("storage.read_as_buffer")
    async def read_as_buffer(self, path: str, options: Union[ReadOptions, Mapping[str, Any], None] = None) -> bytes:
        opts: ReadOptions = _coerce(ReadOptions, options, "Read options are invalid")

        async def _download() -> bytes:
            buffer = await self._remote(self._provider.download, path)
            return decode_buffer(buffer, decompress=opts.decompress)

        return await self._orchestrator.execute(_download, self.policy, name="read_as_buffer")

    @log_calls("storage.read_as_object")
    async def read_as_object(self, path: str, options: Union[ReadOptions, Mapping[str, Any], None] = None) -> Any:
        opts: ReadOptions = _coerce(ReadOptions, options, "Read options are invalid")

        async def _download_and_decode() -> Any:
            buffer = await self._remote(self._provider.download, path)
            return decode_json(buffer, decompress=opts.decompress)

        return await self._orchestrator.execute(_download_and_decode, self.policy, name="read_as_object")

    @log_calls("storage.read")
    async def read(self, path: str, sink: BinaryIO) -> None:
        """Stream the object into ``sink``. The sink is flushed and left open."""
        buffer = await self.read_as_buffer(path)
        # a caller sink cannot be rewound, so delivery gets a single attempt
        deliver = RetryPolicy(max_attempts=1, backoff=0, attempt_timeout=self.policy.attempt_timeout)
        await self._orchestrator.execute(lambda: pipe_into(io.BytesIO(buffer), sink), deliver, name="read")

    @log_calls("storage.list")
    async def list(self, prefix: str = "", query: Optional[Mapping[str, Any]] = None) -> List[RemoteEntry]:
        merged = {"prefix": prefix or ""}
        merged.update(query or {})
        effective_prefix = merged.pop("prefix") or ""

        async def _list() -> List[RemoteEntry]:
            raw = await self._remote(self._provider.list, effective_prefix, merged)
            return normalize_listing(raw, effective_prefix)

        return await self._orchestrator.execute(_list, self.policy, name="list")

    @log_calls("storage.delete")
    async def delete(self, path: str) -> bool:
        async def _delete() -> bool:
            return coerce_deleted(await self._remote(self._provider.delete, path))

        return await self._orchestrator.execute(_delete, self.policy, name="delete")
