from opentelemetry import trace
import os, logging, time, json
from typing import Any, Callable

from .config import settings

SERVICE_NAME = os.getenv("SERVICE_NAME", settings.service_name)
ENV = os.getenv("ENVIRONMENT", "local")

logging.basicConfig(level=os.getenv("LOG_LEVEL", settings.log_level))
_logger = logging.getLogger(SERVICE_NAME)

def jlog(event: str = "", severity: str = "INFO", **fields):
    span = trace.get_current_span()
    ctx = span.get_span_context() if span else None
    trace_id = f"{ctx.trace_id:032x}" if ctx and ctx.trace_id else None
    span_id = f"{ctx.span_id:016x}" if ctx and ctx.span_id else None

    record = {
        "event": event,
        "severity": severity,
        "service": SERVICE_NAME,
        "env": ENV,
        "ts": time.time(),
        "trace_id": trace_id,
        "span_id": span_id,
    }
    record.update(fields)
    _logger.log(getattr(logging, severity, logging.INFO), json.dumps(record, ensure_ascii=False, default=str))

def message_sink(fn: Callable[[str], Any]) -> Callable[..., None]:
    """Adapt a one-argument log function (print, logger.info) to the jlog call shape."""
    def _log(event: str = "", **fields):
        fn(f"{event} {json.dumps(fields, ensure_ascii=False, default=str)}")
    return _log

def guarded(log: Callable[..., Any]) -> Callable[..., None]:
    """A failing log sink is reported through jlog and never fails the caller."""
    if getattr(log, "_guarded", False):
        return log

    def _log(event: str = "", **fields):
        try:
            log(event, **fields)
        except Exception as e:
            jlog(event="log_sink_failed", failed_event=event, error=str(e),
                 error_type=type(e).__name__, severity="ERROR")
    _log._guarded = True # type: ignore[attr-defined]
    return _log
