"""
Protocol Opcode, Request and Response Definitions

This module defines the data structures exchanged with a TellStore
server and the explicit table mapping client operations to opcodes.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Iterable, Mapping, Optional, Union


class Opcode(IntEnum):
    """Request opcodes, sent as a 4-byte little-endian integer."""
    READ = 1
    SCAN = 2
    UPDATE = 3
    INSERT = 4
    DELETE = 5


class Operation(Enum):
    """Client-side operations exposed to the harness."""
    READ = "read"
    SCAN = "scan"
    UPDATE = "update"
    INSERT = "insert"
    DELETE = "delete"


class Status(Enum):
    """Outcome of an operation as reported to the harness."""
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"

    @property
    def is_ok(self) -> bool:
        return self is Status.OK


STATUS_OK_BYTE = 0
STATUS_NOT_FOUND_BYTE = 2


# Two client variants disagree on which opcode carries "update" and which
# carries "insert". Both layouts are kept as named profiles so the choice
# is explicit configuration rather than an accident of the code.
OPCODE_MAPPINGS: Dict[str, Dict[Operation, Opcode]] = {
    "standard": {
        Operation.READ: Opcode.READ,
        Operation.SCAN: Opcode.SCAN,
        Operation.UPDATE: Opcode.UPDATE,
        Operation.INSERT: Opcode.INSERT,
        Operation.DELETE: Opcode.DELETE,
    },
    "swapped": {
        Operation.READ: Opcode.READ,
        Operation.SCAN: Opcode.SCAN,
        Operation.UPDATE: Opcode.INSERT,
        Operation.INSERT: Opcode.UPDATE,
        Operation.DELETE: Opcode.DELETE,
    },
}

DEFAULT_OPCODE_MAPPING = "standard"


def get_opcode_mapping(name: str) -> Dict[Operation, Opcode]:
    """
    Look up a named opcode profile.

    Raises:
        ValueError: if the profile name is unknown
    """
    try:
        return OPCODE_MAPPINGS[name.lower()]
    except KeyError:
        choices = ", ".join(sorted(OPCODE_MAPPINGS))
        raise ValueError(f"Unknown opcode mapping: {name!r} (expected one of: {choices})") from None


Record = Dict[str, bytes]
FieldSet = Optional[Iterable[str]]
Payload = Union[FieldSet, Mapping[str, bytes], None]


@dataclass
class Request:
    """
    A single request to the server.

    Attributes:
        opcode: Opcode sent on the wire
        table: Target table name
        key: Record key
        payload: FieldSet for READ, a record mapping for UPDATE/INSERT,
            None for DELETE
    """
    opcode: Opcode
    table: str
    key: str
    payload: Payload = None


@dataclass
class Response:
    """
    A decoded server response.

    Attributes:
        status: Outcome of the operation
        record: Decoded record (READ only)
    """
    status: Status
    record: Record = field(default_factory=dict)

    @classmethod
    def ok(cls, record: Optional[Record] = None) -> "Response":
        """Create a successful response."""
        return cls(status=Status.OK, record=dict(record or {}))

    @classmethod
    def error(cls) -> "Response":
        """Create an error response with no record."""
        return cls(status=Status.ERROR)
