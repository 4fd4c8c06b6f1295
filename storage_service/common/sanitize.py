# common/sanitize.py
import hashlib
import io
from typing import Any

SAFE_KEYS = {
    "bucket", "path", "prefix", "name", "content_type", "compress",
    "get_url", "decompress", "url", "method",
}
SENSITIVE_KEYS = {
    "authorization", "private_key", "client_email", "token", "password",
    "credentials", "key_filename", "config",
}

def hash_preview(s: str, n: int = 12) -> str:
    if not isinstance(s, str):
        s = str(s)
    return f"sha256={hashlib.sha256(s.encode('utf-8')).hexdigest()[:n]},len={len(s)}"

def sanitize_value(key: str, value: Any) -> Any:
    k = (key or "").lower()
    if k in SAFE_KEYS:
        return value
    if k in SENSITIVE_KEYS:
        # Never log raw; return only hash/length
        return hash_preview(str(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"bytes:{len(value)}"
    if isinstance(value, io.IOBase):
        return f"stream:{type(value).__name__}"
    if isinstance(value, str):
        return value if len(value) <= 120 else hash_preview(value)
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    # For dict/list, shallow-sanitize children
    if isinstance(value, dict):
        return {k: sanitize_value(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value("", v) for v in value]
    return type(value).__name__
