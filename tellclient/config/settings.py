"""
tell-client Configuration Settings

Defaults come from environment variables; harness properties (the
``ycsb-tell.*`` keys) override them per client instance.
"""

import os
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional

from ..protocol.codec import RecordEncoding
from ..protocol.commands import DEFAULT_OPCODE_MAPPING, Opcode, Operation, get_opcode_mapping

# Harness property names
SERVER_PROPERTY = "ycsb-tell.server"
PORT_PROPERTY = "ycsb-tell.server-port"
RECORD_ENCODING_PROPERTY = "ycsb-tell.record-encoding"
OPCODE_MAPPING_PROPERTY = "ycsb-tell.opcode-mapping"
TIMEOUT_PROPERTY = "ycsb-tell.timeout"

DEFAULT_PORT = 8713


def parse_timeout(value: Optional[str]) -> Optional[float]:
    """Parse a timeout in seconds; empty or "none" means block forever."""
    if value is None or str(value).strip().lower() in ("", "none"):
        return None
    timeout = float(value)
    if timeout <= 0:
        raise ValueError(f"Timeout must be positive: {value!r}")
    return timeout


@dataclass
class Settings:
    """Client configuration settings."""

    # Network settings
    SERVER: str = os.environ.get("TELL_SERVER", "localhost")
    SERVER_PORT: int = int(os.environ.get("TELL_SERVER_PORT", str(DEFAULT_PORT)))
    TIMEOUT: Optional[float] = parse_timeout(os.environ.get("TELL_TIMEOUT"))

    # Wire compatibility settings
    RECORD_ENCODING: str = os.environ.get("TELL_RECORD_ENCODING", RecordEncoding.LEGACY.value)
    OPCODE_MAPPING: str = os.environ.get("TELL_OPCODE_MAPPING", DEFAULT_OPCODE_MAPPING)

    # Logging settings
    DEBUG: bool = os.environ.get("TELL_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("TELL_LOG_LEVEL", "INFO")

    @property
    def record_encoding(self) -> RecordEncoding:
        return RecordEncoding.parse(self.RECORD_ENCODING)

    @property
    def opcodes(self) -> Dict[Operation, Opcode]:
        return get_opcode_mapping(self.OPCODE_MAPPING)

    def validate(self) -> "Settings":
        """
        Check every value can be used by a client.

        Raises:
            ValueError: on an unknown encoding or mapping, or a bad port
        """
        if not self.SERVER.strip():
            raise ValueError("Server list must not be empty")
        if not 0 < self.SERVER_PORT < 65536:
            raise ValueError(f"Port out of range: {self.SERVER_PORT}")
        RecordEncoding.parse(self.RECORD_ENCODING)
        get_opcode_mapping(self.OPCODE_MAPPING)
        return self

    def from_properties(self, properties: Optional[Mapping[str, str]]) -> "Settings":
        """
        Return a copy with harness properties applied.

        Args:
            properties: Harness configuration (``ycsb-tell.*`` keys)

        Returns:
            A validated Settings instance
        """
        properties = properties or {}
        overrides = {}

        if SERVER_PROPERTY in properties:
            overrides["SERVER"] = str(properties[SERVER_PROPERTY])
        if PORT_PROPERTY in properties:
            try:
                overrides["SERVER_PORT"] = int(properties[PORT_PROPERTY])
            except ValueError:
                raise ValueError(f"Invalid {PORT_PROPERTY}: {properties[PORT_PROPERTY]!r}") from None
        if RECORD_ENCODING_PROPERTY in properties:
            overrides["RECORD_ENCODING"] = str(properties[RECORD_ENCODING_PROPERTY])
        if OPCODE_MAPPING_PROPERTY in properties:
            overrides["OPCODE_MAPPING"] = str(properties[OPCODE_MAPPING_PROPERTY])
        if TIMEOUT_PROPERTY in properties:
            overrides["TIMEOUT"] = parse_timeout(properties[TIMEOUT_PROPERTY])

        return replace(self, **overrides).validate()


# Global settings instance
settings = Settings()
