"""Source-to-sink transfers, one :class:`TransferHandle` per attempt.

The copy loop runs in a worker thread. A transfer settles exactly once:
success when the sink has been closed cleanly (for uploads that is the
moment the provider commits the object), failure with ``TransferError``
when either side raises. ``abort()`` is the cleanup hook used between
attempts: it sets the handle's cancellation token so that an abandoned
copy loop stops at the next chunk, then releases both ends.
"""
import threading
from typing import Any, BinaryIO, Callable, Optional

from anyio import to_thread

from .exceptions import TransferError
from .logging import guarded, jlog
from .streams import ByteSource

CHUNK_SIZE = 256 * 1024


class TransferHandle:
    def __init__(
        self,
        source: BinaryIO,
        sink: BinaryIO,
        *,
        close_source: bool = True,
        close_sink: bool = True,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.source = source
        self.sink = sink
        self._close_source = close_source
        self._close_sink = close_sink
        self._chunk_size = chunk_size
        self._detached = threading.Event()
        self._lock = threading.Lock()
        self._state = "idle"  # idle -> piping -> finished | failed | aborted
        self.bytes_copied = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def detached(self) -> bool:
        return self._detached.is_set()

    def _copy(self) -> None:
        while True:
            if self._detached.is_set():
                raise TransferError("transfer aborted")
            chunk = self.source.read(self._chunk_size)
            if not chunk:
                break
            self.sink.write(chunk)
            self.bytes_copied += len(chunk)
        if self._detached.is_set():
            raise TransferError("transfer aborted")
        if self._close_sink:
            # "finish": for provider sinks closing is what commits the upload
            self.sink.close()
        else:
            self.sink.flush()

    def _run(self) -> None:
        try:
            self._copy()
        except TransferError:
            self._settle("failed")
            raise
        except Exception as e:
            self._settle("failed")
            if self._detached.is_set():
                raise TransferError("transfer aborted") from e
            raise TransferError(f"transfer failed: {e}") from e
        else:
            self._settle("finished")
        finally:
            if self._close_source and not self.source.closed:
                self.source.close()

    def _settle(self, state: str) -> None:
        with self._lock:
            if self._state == "piping":
                self._state = state

    async def transfer(self, result: Any = True) -> Any:
        with self._lock:
            if self._state != "idle":
                raise TransferError(f"transfer handle is {self._state}; handles are single-use")
            self._state = "piping"
        await to_thread.run_sync(self._run, abandon_on_cancel=True)
        return result

    def abort(self) -> None:
        """Detach source from sink and force the sink closed. Idempotent."""
        with self._lock:
            if self._state in ("finished", "aborted"):
                return
            self._state = "aborted"
        self._detached.set()
        if self._close_source and not self.source.closed:
            self.source.close()
        if self._close_sink:
            abort_sink = getattr(self.sink, "abort", None)
            if callable(abort_sink):
                abort_sink()
            elif not self.sink.closed:
                self.sink.close()


class PipeCoordinator:
    """Builds a fresh TransferHandle for every attempt of one logical upload."""

    def __init__(
        self,
        source: ByteSource,
        open_sink: Callable[[], BinaryIO],
        *,
        label: str = "",
        log: Optional[Callable[..., None]] = None,
    ):
        self._log = guarded(log or jlog)
        self._source = source
        self._open_sink = open_sink
        self._label = label
        self._handle: Optional[TransferHandle] = None
        self.attempts = 0

    @property
    def handle(self) -> Optional[TransferHandle]:
        return self._handle

    def _new_handle(self) -> TransferHandle:
        stream = self._source.to_stream()
        try:
            sink = self._open_sink()
        except Exception as e:
            if self._source.owned:
                stream.close()
            raise TransferError(f"cannot open upload sink for {self._label}: {e}") from e
        return TransferHandle(stream, sink, close_source=self._source.owned)

    async def transfer(self, result: Any = True) -> Any:
        # a handle left over from a failed attempt is never reused
        self.abort()
        self.attempts += 1
        self._handle = self._new_handle()
        value = await self._handle.transfer(result)
        self._handle = None
        return value

    def abort(self, error: Optional[BaseException] = None) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        self._log(
            "pipe_abort",
            target=self._label,
            state=handle.state,
            bytes_copied=handle.bytes_copied,
            error=str(error) if error else None,
            severity="WARNING",
        )
        handle.abort()


async def pipe_into(source: BinaryIO, sink: BinaryIO) -> int:
    """Copy ``source`` into a caller-owned ``sink``; the sink is flushed, not closed."""
    handle = TransferHandle(source, sink, close_source=True, close_sink=False)
    await handle.transfer()
    return handle.bytes_copied
