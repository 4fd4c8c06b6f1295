import time
from typing import Awaitable, Callable, Optional, TypeVar

import anyio

from .exceptions import AttemptTimeoutError

T = TypeVar("T")

TIMEOUT_MESSAGE = "operation did not reach a final state within the allotted time"


async def with_timeout(operation: Callable[[], Awaitable[T]], deadline_s: Optional[float]) -> T:
    """
    Race one attempt of ``operation`` against a wall-clock deadline.

    The awaiting side is cancelled when the deadline fires; work that was
    handed to a worker thread is abandoned rather than stopped and may still
    complete in the background. ``deadline_s=None`` waits without a bound.
    """
    if deadline_s is None:
        return await operation()

    started = time.monotonic()
    with anyio.move_on_after(deadline_s):
        return await operation()

    # only reached when the scope swallowed its own cancellation
    elapsed = time.monotonic() - started
    raise AttemptTimeoutError(f"{TIMEOUT_MESSAGE} ({deadline_s:.3f}s, waited {elapsed:.3f}s)")
