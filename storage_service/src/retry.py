"""Bounded-attempt retry of an operation-under-timeout.

One call to :meth:`RetryOrchestrator.execute` is one logical call:

    Idle -> Attempting -> Succeeded
                       -> AttemptFailed -> BackoffWait -> Attempting
                       -> ExhaustedFailed

Attempts are strictly sequential. The cleanup hook of a failed attempt
runs to completion before the backoff wait, so the next attempt never
overlaps with the remains of the previous one. Every error kind is
retried the same way; there is no retryable/fatal split here.
"""
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar, Union

import anyio
from opentelemetry import trace
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ..common.context import get_call_id
from .exceptions import InvalidConfigurationError, RetryExhaustedError
from .logging import guarded, jlog
from .schemas import DEFAULT_MAX_RETRY_TIMEOUT_MS, DEFAULT_RETRIES_COUNT, DEFAULT_RETRY_INTERVAL_MS, StorageOptions
from .timeouts import with_timeout

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
CleanupHook = Callable[[Optional[BaseException]], None]
Backoff = Union[float, Callable[[int], float]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Immutable retry budget for one logical call.

    Attributes:
        max_attempts: Total attempts, at least 1.
        backoff: Seconds to wait after a failed attempt, either fixed or a
            function of the 1-based number of the attempt that just failed.
        attempt_timeout: Per-attempt deadline in seconds; ``None`` waits forever.
    """
    max_attempts: int = DEFAULT_RETRIES_COUNT
    backoff: Backoff = DEFAULT_RETRY_INTERVAL_MS / 1000.0
    attempt_timeout: Optional[float] = DEFAULT_MAX_RETRY_TIMEOUT_MS / 1000.0

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise InvalidConfigurationError(f"max_attempts must be a positive integer, got {self.max_attempts!r}")
        if not callable(self.backoff) and self.backoff < 0:
            raise InvalidConfigurationError(f"backoff must not be negative, got {self.backoff!r}")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise InvalidConfigurationError(f"attempt_timeout must be positive, got {self.attempt_timeout!r}")

    @classmethod
    def from_options(cls, options: StorageOptions) -> "RetryPolicy":
        return cls(
            max_attempts=options.retries_count,
            backoff=options.retry_interval / 1000.0,
            attempt_timeout=options.max_retry_timeout / 1000.0 if options.max_retry_timeout else None,
        )

    def backoff_for(self, attempt_number: int) -> float:
        if callable(self.backoff):
            return max(0.0, float(self.backoff(attempt_number)))
        return float(self.backoff)


class RetryOrchestrator:
    def __init__(self, log: Optional[Callable[..., None]] = None, tracer: Optional[trace.Tracer] = None):
        self._log = guarded(log or jlog)
        self._tracer = tracer or trace.get_tracer(__name__)

    @staticmethod
    def _wait(policy: RetryPolicy):
        if callable(policy.backoff):
            return lambda rs: policy.backoff_for(rs.attempt_number)
        return wait_fixed(policy.backoff)

    async def execute(
        self,
        operation: Operation[T],
        policy: RetryPolicy,
        cleanup: Optional[CleanupHook] = None,
        *,
        name: str = "operation",
    ) -> T:
        if not isinstance(policy, RetryPolicy):
            raise InvalidConfigurationError(f"expected a RetryPolicy, got {type(policy).__name__}")

        call_id = get_call_id()
        started = time.monotonic()
        self._log("retry_start", operation=name, max_attempts=policy.max_attempts,
                  attempt_timeout_s=policy.attempt_timeout, call_id=call_id)

        def _after_attempt(rs: RetryCallState) -> None:
            error = rs.outcome.exception() if rs.outcome else None
            self._log(
                "attempt_failed",
                operation=name,
                attempt=rs.attempt_number,
                attempts_left=policy.max_attempts - rs.attempt_number,
                error=str(error),
                error_type=type(error).__name__,
                call_id=call_id,
                severity="WARNING",
            )

        def _before_sleep(rs: RetryCallState) -> None:
            error = rs.outcome.exception() if rs.outcome else None
            if cleanup is not None:
                try:
                    cleanup(error)
                except Exception as e:
                    self._log("cleanup_failed", operation=name, attempt=rs.attempt_number,
                              error=str(e), call_id=call_id, severity="ERROR")
            self._log(
                "retry_scheduled",
                operation=name,
                attempt=rs.attempt_number,
                wait_s=getattr(getattr(rs, "next_action", None), "sleep", None),
                call_id=call_id,
            )

        retrying = AsyncRetrying(
            sleep=anyio.sleep,
            stop=stop_after_attempt(policy.max_attempts),
            wait=self._wait(policy),
            retry=retry_if_exception_type(Exception),
            after=_after_attempt,
            before_sleep=_before_sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    with self._tracer.start_as_current_span(f"{name}.attempt") as span:
                        span.set_attribute("storage.operation", name)
                        span.set_attribute("storage.attempt", number)
                        result = await with_timeout(operation, policy.attempt_timeout)
                    self._log("attempt_ok", operation=name, attempt=number,
                              elapsed_ms=int((time.monotonic() - started) * 1000), call_id=call_id)
                    return result
        except RetryError as e:
            last_error = e.last_attempt.exception()
            self._log(
                "retry_exhausted",
                operation=name,
                attempts=policy.max_attempts,
                error=str(last_error),
                elapsed_ms=int((time.monotonic() - started) * 1000),
                call_id=call_id,
                severity="ERROR",
            )
            raise RetryExhaustedError(last_error, policy.max_attempts, name) from last_error
        # unreachable: AsyncRetrying either yields until success or raises
        raise RuntimeError(f"{name}: retry loop ended without a result")
