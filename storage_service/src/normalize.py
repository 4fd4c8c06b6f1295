import gzip
import json
import zlib
from typing import Any, Iterable, List, Mapping, Optional, Union

from .schemas import RawEntry, RemoteEntry

def normalize_entry(raw: Union[RawEntry, Mapping[str, Any]]) -> RemoteEntry:
    if not isinstance(raw, RawEntry):
        raw = RawEntry.model_validate(raw)
    envelope = dict(raw.envelope or {})
    return RemoteEntry(
        identifier=raw.name,
        properties=envelope,
        metadata=dict(envelope.get("metadata") or {}),
    )

def normalize_listing(raw_entries: Iterable[Union[RawEntry, Mapping[str, Any]]], prefix: Optional[str] = "") -> List[RemoteEntry]:
    entries = [normalize_entry(raw) for raw in raw_entries]
    if prefix:
        # the provider filters already; a passthrough query must not widen it
        entries = [e for e in entries if e.identifier.startswith(prefix)]
    return entries

def decode_json(buffer: bytes, decompress: bool = False) -> Any:
    """
    Decode a downloaded object as UTF-8 JSON.

    With ``decompress=True`` a buffer that does not parse is treated as a
    gzip payload and parsed again after decompression. Without it the
    parse error propagates; the format is never guessed.
    """
    try:
        return json.loads(buffer.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        if not decompress:
            raise
    try:
        inflated = gzip.decompress(buffer)
    except (OSError, EOFError, zlib.error) as e:
        raise ValueError(f"payload is neither JSON nor gzip-compressed JSON: {e}") from e
    return json.loads(inflated.decode("utf-8"))

def coerce_deleted(result: Any) -> bool:
    return bool(result)

def decode_buffer(buffer: bytes, decompress: bool = False) -> bytes:
    if not decompress:
        return buffer
    try:
        return gzip.decompress(buffer)
    except (OSError, EOFError, zlib.error) as e:
        raise ValueError(f"payload is not gzip-compressed: {e}") from e
