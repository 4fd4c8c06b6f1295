"""Turn the values accepted by ``save()`` into readable byte streams.

A value is classified once, up front, into a :class:`ByteSource` variant.
Each upload attempt then asks the variant for a fresh stream so that a
partially consumed stream is never carried into the next attempt.
"""
import io
import json
import os
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Optional, Union

from .exceptions import TransferError, UnsupportedInputTypeError

JSON_SCALARS = (str, int, float, bool, type(None))


def to_json_bytes(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class ByteSource:
    kind = "abstract"
    # streams we open ourselves are closed by the pipe; caller streams are not
    owned = True

    def to_stream(self) -> BinaryIO:
        raise NotImplementedError

    @staticmethod
    def of(value: Any) -> "ByteSource":
        """Classify ``value``; raises UnsupportedInputTypeError for anything else."""
        if isinstance(value, ByteSource):
            return value
        if isinstance(value, io.IOBase):
            return ByteSource.from_stream(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return ByteSource.from_bytes(value)
        if isinstance(value, (str, os.PathLike)):
            return ByteSource.from_path(value)
        if isinstance(value, (dict, list, tuple)) or isinstance(value, JSON_SCALARS):
            return ByteSource.from_value(value)
        raise UnsupportedInputTypeError(
            f"Specified parameter has unsupported type: {type(value).__name__}"
        )

    @staticmethod
    def from_bytes(data: Union[bytes, bytearray, memoryview]) -> "Bytes":
        return Bytes(bytes(data))

    @staticmethod
    def from_path(path: Union[str, "os.PathLike[str]"]) -> "FilePath":
        return FilePath(os.fspath(path))

    @staticmethod
    def from_stream(stream: Any) -> "Stream":
        if not isinstance(stream, io.IOBase) or isinstance(stream, io.TextIOBase) or not stream.readable():
            raise UnsupportedInputTypeError("stream source must be a readable binary file object")
        return Stream(stream)

    @staticmethod
    def from_value(value: Any) -> "SerializableValue":
        try:
            payload = to_json_bytes(value)
        except (TypeError, ValueError) as e:
            raise UnsupportedInputTypeError(f"value is not JSON serializable: {e}") from e
        return SerializableValue(value, payload)


@dataclass(frozen=True)
class Bytes(ByteSource):
    data: bytes
    kind = "bytes"

    def to_stream(self) -> BinaryIO:
        return io.BytesIO(self.data)


@dataclass(frozen=True)
class FilePath(ByteSource):
    path: str
    kind = "path"

    def to_stream(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except OSError as e:
            raise TransferError(f"cannot open {self.path}: {e}") from e


@dataclass(frozen=True)
class SerializableValue(ByteSource):
    value: Any
    payload: bytes = field(repr=False)
    kind = "value"

    def to_stream(self) -> BinaryIO:
        return io.BytesIO(self.payload)


@dataclass
class Stream(ByteSource):
    stream: Any
    kind = "stream"
    owned = False
    _start: Optional[int] = field(default=None, init=False, repr=False)
    _handed_out: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.stream.seekable():
            self._start = self.stream.tell()

    def to_stream(self) -> BinaryIO:
        if not self._handed_out:
            self._handed_out = True
            return self.stream
        # replay for a later attempt
        if self._start is None or self.stream.closed:
            raise TransferError("stream source was consumed by a previous attempt and cannot be replayed")
        self.stream.seek(self._start)
        return self.stream
