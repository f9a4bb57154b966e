"""Protocol module for tell-client."""

from .codec import BufferReader, RecordEncoding, encode_request, frame
from .commands import (
    OPCODE_MAPPINGS,
    Opcode,
    Operation,
    Request,
    Response,
    Status,
    get_opcode_mapping,
)
from .errors import ClientError, ConnectionFailedError, FramingError, ProtocolStateError

__all__ = [
    "BufferReader",
    "RecordEncoding",
    "encode_request",
    "frame",
    "OPCODE_MAPPINGS",
    "Opcode",
    "Operation",
    "Request",
    "Response",
    "Status",
    "get_opcode_mapping",
    "ClientError",
    "ConnectionFailedError",
    "FramingError",
    "ProtocolStateError",
]
