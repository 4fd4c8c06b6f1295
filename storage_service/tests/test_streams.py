import io
import json

import pytest

from storage_service.src.exceptions import TransferError, UnsupportedInputTypeError
from storage_service.src.streams import ByteSource, Bytes, FilePath, SerializableValue, Stream


class _OneShotStream(io.RawIOBase):
    """Readable, not seekable: behaves like a socket or a pipe."""

    def __init__(self, data):
        self._data = io.BytesIO(data)

    def readable(self):
        return True

    def readinto(self, b):
        chunk = self._data.read(len(b))
        b[: len(chunk)] = chunk
        return len(chunk)


def test_bytes_are_wrapped_in_a_fresh_stream_each_time():
    source = ByteSource.of(b"\x89PNG\r\n")
    assert isinstance(source, Bytes)
    first, second = source.to_stream(), source.to_stream()
    assert first is not second
    assert first.read() == second.read() == b"\x89PNG\r\n"


def test_bytearray_and_memoryview_count_as_bytes():
    assert isinstance(ByteSource.of(bytearray(b"ab")), Bytes)
    assert isinstance(ByteSource.of(memoryview(b"ab")), Bytes)


def test_structured_value_serializes_to_compact_json():
    value = {"str": "value", "num": 85.5, "arr": [1, 2, 3]}
    source = ByteSource.of(value)
    assert isinstance(source, SerializableValue)
    payload = source.to_stream().read()
    assert payload == b'{"str":"value","num":85.5,"arr":[1,2,3]}'
    assert json.loads(payload) == value


def test_path_string_opens_the_file(tmp_path):
    target = tmp_path / "tesla.png"
    target.write_bytes(b"\x00\x01binary")

    source = ByteSource.of(str(target))
    assert isinstance(source, FilePath)
    with source.to_stream() as stream:
        assert stream.read() == b"\x00\x01binary"

    assert isinstance(ByteSource.of(target), FilePath)


def test_missing_file_fails_the_attempt_not_the_call(tmp_path):
    source = ByteSource.of(str(tmp_path / "nope.bin"))
    with pytest.raises(TransferError):
        source.to_stream()


def test_stream_passes_through_and_replays_when_seekable():
    raw = io.BytesIO(b"header|payload")
    raw.read(7)
    source = ByteSource.of(raw)
    assert isinstance(source, Stream)
    assert source.owned is False

    first = source.to_stream()
    assert first is raw
    assert first.read() == b"payload"
    # the retry starts from where the caller handed the stream over
    assert source.to_stream().read() == b"payload"


def test_consumed_one_shot_stream_cannot_be_replayed():
    source = ByteSource.of(_OneShotStream(b"data"))
    source.to_stream().read()
    with pytest.raises(TransferError):
        source.to_stream()


@pytest.mark.parametrize("value", [object(), {1, 2}, 3 + 4j, io.StringIO("hello")])
def test_unsupported_types_are_rejected_up_front(value):
    with pytest.raises(UnsupportedInputTypeError):
        ByteSource.of(value)


def test_unserializable_nested_value_is_rejected():
    with pytest.raises(UnsupportedInputTypeError):
        ByteSource.of({"when": object()})


def test_explicit_variant_for_a_json_string():
    source = ByteSource.from_value("just text")
    assert source.to_stream().read() == b'"just text"'


def test_explicit_variant_passes_through_of():
    source = ByteSource.from_bytes(b"x")
    assert ByteSource.of(source) is source


def test_text_mode_file_is_rejected(tmp_path):
    target = tmp_path / "notes.txt"
    target.write_text("hello")
    with open(target, "r") as text_file:
        with pytest.raises(UnsupportedInputTypeError):
            ByteSource.of(text_file)
