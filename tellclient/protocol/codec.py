"""
Wire Codec Module

Encoding and decoding of the TellStore binary format. Every integer is a
4-byte little-endian unsigned value; every variable-length unit (string,
byte array, field set, record) is preceded by its byte or element count,
and every request body is itself preceded by its length.

    Request  := int32(length) opcode table key payload
    FieldSet := int32(count) { string }*count
    Record   := int32(count) { string, int32(len) bytes[len] }*count

Decoding reads from any object exposing ``read_exactly(n) -> bytes``:
a live Connection while a response streams in, or a BufferReader over
an already received body.
"""

import struct
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Union

from .commands import (
    Opcode,
    Record,
    Request,
    Status,
    STATUS_NOT_FOUND_BYTE,
    STATUS_OK_BYTE,
)
from .errors import FramingError

_INT32 = struct.Struct("<I")
INT32_SIZE = _INT32.size
MAX_INT32 = 0xFFFFFFFF

BytesLike = Union[bytes, bytearray, memoryview, str]


class RecordEncoding(Enum):
    """
    Layout used when a record is written into a request.

    LEGACY reproduces the byte layout of the deployed client: each field
    name is written twice (once as a string, once as a byte array) and the
    field value is never sent. VALUES writes each name followed by its
    value, which is what the decoder expects to read back.
    """
    LEGACY = "legacy"
    VALUES = "values"

    @classmethod
    def parse(cls, name: str) -> "RecordEncoding":
        try:
            return cls(name.lower())
        except ValueError:
            choices = ", ".join(e.value for e in cls)
            raise ValueError(f"Unknown record encoding: {name!r} (expected one of: {choices})") from None


class BufferReader:
    """In-memory ``read_exactly`` source over a received message body."""

    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))
        self._pos = 0

    def read_exactly(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            received = len(self._data) - self._pos
            raise FramingError(
                f"premature end of message: expected {n} bytes, got {received}",
                expected=n,
                received=received,
            )
        chunk = self._data[self._pos:end].tobytes()
        self._pos = end
        return chunk

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos


# ============================================================================
# Primitives
# ============================================================================

def encode_int32(value: int) -> bytes:
    """Encode a count, length or opcode as 4 little-endian bytes."""
    if not 0 <= value <= MAX_INT32:
        raise ValueError(f"Value out of range for int32 field: {value}")
    return _INT32.pack(value)


def decode_int32(data: bytes) -> int:
    """Decode 4 little-endian bytes."""
    if len(data) != INT32_SIZE:
        raise FramingError(
            f"expected {INT32_SIZE} bytes for int32, got {len(data)}",
            expected=INT32_SIZE,
            received=len(data),
        )
    return _INT32.unpack(data)[0]


def read_int32(reader) -> int:
    return decode_int32(reader.read_exactly(INT32_SIZE))


def to_bytes(value: BytesLike) -> bytes:
    """Coerce a field value to bytes; text is encoded as UTF-8."""
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"Field values must be bytes or str, not {type(value).__name__}")


def encode_byte_array(data: BytesLike) -> bytes:
    """Encode ``[len][raw bytes]``."""
    raw = to_bytes(data)
    return encode_int32(len(raw)) + raw


def decode_byte_array(reader) -> bytes:
    length = read_int32(reader)
    return reader.read_exactly(length)


def encode_string(text: str) -> bytes:
    """Encode ``[len][utf-8 bytes]``; the length counts bytes, not characters."""
    return encode_byte_array(text.encode("utf-8"))


def decode_string(reader) -> str:
    raw = decode_byte_array(reader)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FramingError(f"invalid UTF-8 in string field: {e}") from e


# ============================================================================
# Composite values
# ============================================================================

def _field_names(fields: Optional[Iterable[str]]) -> List[str]:
    """Materialize a field set once, in a stable order."""
    if fields is None:
        return []
    if isinstance(fields, (set, frozenset)):
        return sorted(fields)
    return list(dict.fromkeys(fields))


def encode_field_set(fields: Optional[Iterable[str]]) -> bytes:
    """Encode ``[count][string]*``. ``None`` means all fields (count 0)."""
    names = _field_names(fields)
    parts = [encode_int32(len(names))]
    parts.extend(encode_string(name) for name in names)
    return b"".join(parts)


def decode_field_set(reader) -> List[str]:
    count = read_int32(reader)
    return [decode_string(reader) for _ in range(count)]


def encode_record(record: Optional[Mapping[str, BytesLike]],
                  encoding: RecordEncoding = RecordEncoding.LEGACY) -> bytes:
    """
    Encode a field-name to value mapping.

    Args:
        record: Mapping of field name to value bytes
        encoding: LEGACY for the deployed server, VALUES to send values

    Returns:
        ``[count]`` followed by one name/bytes pair per field
    """
    record = record or {}
    parts = [encode_int32(len(record))]
    for name, value in record.items():
        parts.append(encode_string(name))
        if encoding is RecordEncoding.LEGACY:
            parts.append(encode_byte_array(name.encode("utf-8")))
        else:
            parts.append(encode_byte_array(value))
    return b"".join(parts)


def decode_record(reader) -> Record:
    """Decode ``[count]`` followed by ``count`` (string, byte array) pairs."""
    count = read_int32(reader)
    record: Record = {}
    for _ in range(count):
        name = decode_string(reader)
        record[name] = decode_byte_array(reader)
    return record


def decode_status(value: int) -> Status:
    """Map a status byte to a Status; anything but 0 or 2 is an ERROR."""
    if value == STATUS_OK_BYTE:
        return Status.OK
    if value == STATUS_NOT_FOUND_BYTE:
        return Status.NOT_FOUND
    return Status.ERROR


def read_status(reader) -> Status:
    return decode_status(reader.read_exactly(1)[0])


# ============================================================================
# Requests
# ============================================================================

def encode_request(request: Request,
                   encoding: RecordEncoding = RecordEncoding.LEGACY) -> bytes:
    """
    Encode a request body: ``opcode table key payload``.

    The body is not length-prefixed; see frame().
    """
    parts = [
        encode_int32(int(request.opcode)),
        encode_string(request.table),
        encode_string(request.key),
    ]
    if request.opcode == Opcode.READ:
        parts.append(encode_field_set(request.payload))
    elif request.opcode in (Opcode.UPDATE, Opcode.INSERT):
        parts.append(encode_record(request.payload, encoding))
    elif request.opcode == Opcode.DELETE:
        pass
    else:
        raise ValueError(f"Opcode {request.opcode.name} has no request encoding")
    return b"".join(parts)


def frame(body: bytes) -> bytes:
    """Prefix a message body with its 4-byte length."""
    return encode_int32(len(body)) + body
