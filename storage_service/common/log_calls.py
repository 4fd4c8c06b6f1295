# common/log_calls.py
import asyncio
import inspect
import time
from functools import wraps
from typing import Any, Callable, Dict

from ..src.logging import jlog
from .context import get_call_id, new_call_id, set_call_id
from .sanitize import sanitize_value

CALL_LOGGER_ENABLED = True

def _bind_args(func: Callable, *args, **kwargs) -> Dict[str, Any]:
    sig = inspect.signature(func)
    bound = sig.bind_partial(*args, **kwargs)
    bound.apply_defaults()
    arguments = dict(bound.arguments)
    arguments.pop("self", None)
    return arguments

def log_calls(name: str | None = None):
    """
    Structured call logger for sync/async functions.
    - Logs start/end/error with sanitized args and duration_ms.
    - Tags every line with the call_id of the outermost logical call;
      nested decorated calls reuse it so interleaved lines from
      concurrent calls can be told apart.
    """
    def decorator(func: Callable):
        func_name = name or func.__name__
        is_coro = asyncio.iscoroutinefunction(func)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if not CALL_LOGGER_ENABLED:
                return await func(*args, **kwargs)

            parent = get_call_id()
            cid = parent or new_call_id()
            start = time.time()
            argmap = _bind_args(func, *args, **kwargs)
            san_args = {k: sanitize_value(k, v) for k, v in argmap.items()}
            jlog(event="call_start", fn=func_name, args=san_args, call_id=cid)

            try:
                result = await func(*args, **kwargs)
                dur = int((time.time() - start) * 1000)
                san_ret = sanitize_value("return", result)
                jlog(event="call_end", fn=func_name, duration_ms=dur, ret=san_ret, call_id=cid)
                return result
            except Exception as e:
                dur = int((time.time() - start) * 1000)
                jlog(event="call_error", fn=func_name, duration_ms=dur, error=str(e),
                     error_type=type(e).__name__, call_id=cid, severity="ERROR")
                raise
            finally:
                set_call_id(parent)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if not CALL_LOGGER_ENABLED:
                return func(*args, **kwargs)

            parent = get_call_id()
            cid = parent or new_call_id()
            start = time.time()
            argmap = _bind_args(func, *args, **kwargs)
            san_args = {k: sanitize_value(k, v) for k, v in argmap.items()}
            jlog(event="call_start", fn=func_name, args=san_args, call_id=cid)

            try:
                result = func(*args, **kwargs)
                dur = int((time.time() - start) * 1000)
                san_ret = sanitize_value("return", result)
                jlog(event="call_end", fn=func_name, duration_ms=dur, ret=san_ret, call_id=cid)
                return result
            except Exception as e:
                dur = int((time.time() - start) * 1000)
                jlog(event="call_error", fn=func_name, duration_ms=dur, error=str(e),
                     error_type=type(e).__name__, call_id=cid, severity="ERROR")
                raise
            finally:
                set_call_id(parent)

        return async_wrapper if is_coro else sync_wrapper
    return decorator
