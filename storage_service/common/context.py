import contextvars
import uuid
from typing import Optional

_call_id = contextvars.ContextVar("call_id", default=None)

def new_call_id() -> str:
    call_id = uuid.uuid4().hex[:12]
    _call_id.set(call_id) # type: ignore
    return call_id

def set_call_id(call_id: Optional[str]) -> None:
    _call_id.set(call_id) # type: ignore

def get_call_id() -> Optional[str]:
    return _call_id.get()
