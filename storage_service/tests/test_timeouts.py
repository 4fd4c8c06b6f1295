import threading
import time

import anyio
import pytest
from anyio import to_thread

from storage_service.src.exceptions import AttemptTimeoutError
from storage_service.src.timeouts import TIMEOUT_MESSAGE, with_timeout

pytestmark = pytest.mark.anyio


async def test_result_of_an_operation_that_settles_in_time():
    async def quick():
        return 42

    assert await with_timeout(quick, 1.0) == 42


async def test_no_deadline_waits_for_the_operation():
    async def slowish():
        await anyio.sleep(0.05)
        return "ok"

    assert await with_timeout(slowish, None) == "ok"


async def test_deadline_fires_first():
    async def hang():
        await anyio.sleep(30)

    started = time.monotonic()
    with pytest.raises(AttemptTimeoutError) as exc_info:
        await with_timeout(hang, 0.05)
    assert time.monotonic() - started < 1.0
    assert TIMEOUT_MESSAGE in str(exc_info.value)


async def test_operation_error_is_not_reported_as_timeout():
    async def broken():
        raise ConnectionError("No internet connection.")

    with pytest.raises(ConnectionError):
        await with_timeout(broken, 1.0)


async def test_thread_work_is_abandoned_not_stopped():
    release = threading.Event()
    finished = threading.Event()

    def blocking():
        release.wait(5)
        finished.set()

    async def op():
        await to_thread.run_sync(blocking, abandon_on_cancel=True)

    with pytest.raises(AttemptTimeoutError):
        await with_timeout(op, 0.05)

    # the loser keeps running in the background after the caller moved on
    assert not finished.is_set()
    release.set()
    assert finished.wait(2)
