"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests,
including an in-process asyncio server that speaks the TellStore binary
protocol.
"""

import asyncio
import socket
from contextlib import closing
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from tellclient.cluster.endpoints import Endpoint, RotatingCounter
from tellclient.config.settings import PORT_PROPERTY, SERVER_PROPERTY
from tellclient.network.connection import Connection
from tellclient.protocol.codec import (
    BufferReader,
    decode_field_set,
    decode_record,
    decode_string,
    encode_byte_array,
    encode_int32,
    encode_string,
    read_int32,
)
from tellclient.protocol.commands import Opcode

STATUS_OK = b"\x00"
STATUS_ERROR = b"\x01"
STATUS_NOT_FOUND = b"\x02"


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def encode_response_record(record: Dict[str, bytes]) -> bytes:
    """Encode a read response the way the server does."""
    parts = [encode_int32(len(record))]
    for name, value in record.items():
        parts.append(encode_string(name))
        parts.append(encode_byte_array(value))
    return b"".join(parts)


# ============================================================================
# Test Servers
# ============================================================================

class _AsyncTCPServer:
    """Shared start/stop handling for the test servers."""

    def __init__(self, host: str = '127.0.0.1', port: int = 0):
        self.host = host
        self.port = port
        self.connections = 0
        self._server: Optional[asyncio.Server] = None
        self._writers = set()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._accept, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        self._server = None

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        try:
            await self.handle_client(reader, writer)
        except (ConnectionResetError, BrokenPipeError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except Exception:
                pass

    async def handle_client(self, reader, writer) -> None:
        raise NotImplementedError


class FakeTellServer(_AsyncTCPServer):
    """
    In-memory TellStore server.

    Semantics:
        INSERT  creates a record; ERROR if the key already exists
        UPDATE  merges fields into an existing record; NOT_FOUND otherwise
        READ    returns the record (projected); an empty record if missing
        DELETE  removes a record; NOT_FOUND if missing

    Attributes:
        tables: table -> key -> record
        requests: (opcode, table, key) of every request received
        raw_requests: undecoded request bodies
        status_override: if set, sent instead of the computed status byte
    """

    def __init__(self, host: str = '127.0.0.1', port: int = 0):
        super().__init__(host, port)
        self.tables: Dict[str, Dict[str, Dict[str, bytes]]] = {}
        self.requests: List[Tuple[Opcode, str, str]] = []
        self.raw_requests: List[bytes] = []
        self.status_override: Optional[bytes] = None

    async def handle_client(self, reader, writer) -> None:
        while True:
            try:
                header = await reader.readexactly(4)
                body = await reader.readexactly(int.from_bytes(header, "little"))
            except asyncio.IncompleteReadError:
                break
            writer.write(self.process(body))
            await writer.drain()

    def process(self, body: bytes) -> bytes:
        self.raw_requests.append(body)
        reader = BufferReader(body)
        opcode = Opcode(read_int32(reader))
        table_name = decode_string(reader)
        key = decode_string(reader)
        self.requests.append((opcode, table_name, key))
        table = self.tables.setdefault(table_name, {})

        if opcode == Opcode.READ:
            fields = decode_field_set(reader)
            record = table.get(key, {})
            if fields:
                record = {name: value for name, value in record.items() if name in fields}
            return encode_response_record(record)

        if opcode == Opcode.INSERT:
            values = decode_record(reader)
            if key in table:
                status = STATUS_ERROR
            else:
                table[key] = values
                status = STATUS_OK
        elif opcode == Opcode.UPDATE:
            values = decode_record(reader)
            if key in table:
                table[key].update(values)
                status = STATUS_OK
            else:
                status = STATUS_NOT_FOUND
        elif opcode == Opcode.DELETE:
            status = STATUS_OK if table.pop(key, None) is not None else STATUS_NOT_FOUND
        else:
            status = STATUS_ERROR

        return self.status_override if self.status_override is not None else status


class ScriptedServer(_AsyncTCPServer):
    """Answers the first request with fixed bytes, then hangs up."""

    def __init__(self, reply: bytes, host: str = '127.0.0.1', port: int = 0):
        super().__init__(host, port)
        self.reply = reply

    async def handle_client(self, reader, writer) -> None:
        header = await reader.readexactly(4)
        await reader.readexactly(int.from_bytes(header, "little"))
        writer.write(self.reply)
        await writer.drain()


class SilentServer(_AsyncTCPServer):
    """Accepts requests and never answers; holds the connection until the peer leaves."""

    async def handle_client(self, reader, writer) -> None:
        while await reader.read(4096):
            pass


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def server() -> AsyncGenerator[FakeTellServer, None]:
    """Start a FakeTellServer on a free port."""
    srv = FakeTellServer()
    await srv.start()

    yield srv

    await srv.stop()


@pytest_asyncio.fixture
async def servers() -> AsyncGenerator[List[FakeTellServer], None]:
    """Start three independent FakeTellServers."""
    started = []
    for _ in range(3):
        srv = FakeTellServer()
        await srv.start()
        started.append(srv)

    yield started

    for srv in started:
        await srv.stop()


@pytest_asyncio.fixture
async def silent_server() -> AsyncGenerator[SilentServer, None]:
    """Start a SilentServer on a free port."""
    srv = SilentServer()
    await srv.start()

    yield srv

    await srv.stop()


@pytest_asyncio.fixture
async def scripted_server_factory():
    """
    Factory for ScriptedServers; stopped automatically.

    Usage:
        async def test_something(scripted_server_factory):
            srv = await scripted_server_factory(b"\\x01\\x00")
    """
    started = []

    async def factory(reply: bytes) -> ScriptedServer:
        srv = ScriptedServer(reply)
        await srv.start()
        started.append(srv)
        return srv

    yield factory

    for srv in started:
        await srv.stop()


# ============================================================================
# Client Fixtures
# ============================================================================

@pytest.fixture
def counter() -> RotatingCounter:
    """A private rotation counter, starting at zero."""
    return RotatingCounter()


@pytest.fixture
def make_properties():
    """
    Build harness properties pointing at one or more servers.

    Extra keyword arguments are added as ``ycsb-tell.<name>`` with
    underscores turned into dashes.

    Usage:
        props = make_properties(server, record_encoding="values")
    """
    def factory(*targets, **extra: str) -> Dict[str, str]:
        props = {
            SERVER_PROPERTY: ";".join(t.address for t in targets),
            PORT_PROPERTY: "8713",
        }
        for name, value in extra.items():
            props[f"ycsb-tell.{name.replace('_', '-')}"] = value
        return props
    return factory


@pytest.fixture
def socket_pair():
    """
    A connected (Connection, peer socket) pair with no server involved.

    The peer end is a plain socket the test reads from and writes to.
    """
    local, peer = socket.socketpair()
    conn = Connection.attach(local, Endpoint("peer", 1))

    yield conn, peer

    conn.close()
    peer.close()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
