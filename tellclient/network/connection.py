"""
Blocking TCP Connection Module

One Connection owns one socket and its buffered reader and writer for
the lifetime of a client instance.

State machine:

    CLOSED --open()--> IDLE --exchange()--> AWAITING_RESPONSE --> IDLE
                                                  |
                                           (any failure)
                                                  v
                                               BROKEN --open()--> IDLE

Only one request may be outstanding at a time. Entering exchange()
while a response is still awaited is a contract violation and raises
ProtocolStateError instead of blocking on a response meant for the
earlier request. After a failed exchange the stream position is
unknown, so the connection refuses further exchanges until reopened.
"""

import logging
import socket
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from ..cluster.endpoints import Endpoint
from ..protocol.codec import frame, read_int32
from ..protocol.errors import ConnectionFailedError, FramingError, ProtocolStateError

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle states of a Connection."""
    CLOSED = "closed"
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    BROKEN = "broken"


class Connection:
    """
    A single blocking TCP connection to a TellStore server.

    Usage:
        conn = Connection(Endpoint("localhost", 8713))
        conn.open()
        with conn.exchange():
            conn.send_framed(body)
            status = conn.read_byte()
        conn.close()

    Attributes:
        endpoint: Server address this connection talks to
        timeout: Socket timeout in seconds; None blocks indefinitely
        state: Current ConnectionState
    """

    def __init__(self, endpoint: Endpoint, timeout: Optional[float] = None):
        self.endpoint = endpoint
        self.timeout = timeout
        self.state = ConnectionState.CLOSED
        self._state_lock = threading.Lock()

        self._sock: Optional[socket.socket] = None
        self._reader = None
        self._writer = None

    @classmethod
    def attach(cls, sock: socket.socket, endpoint: Optional[Endpoint] = None) -> "Connection":
        """
        Wrap an already connected socket.

        For embedding the client over a socket set up elsewhere, such as
        one end of a socketpair. Without an endpoint the peer address is
        used, or a placeholder when the socket has none.
        """
        if endpoint is None:
            try:
                host, port = sock.getpeername()[:2]
                endpoint = Endpoint(str(host), int(port))
            except (OSError, TypeError, ValueError):
                endpoint = Endpoint("<attached>", 0)
        conn = cls(endpoint)
        conn._wrap(sock)
        return conn

    def _wrap(self, sock: socket.socket) -> None:
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._writer = sock.makefile("wb")
        self.state = ConnectionState.IDLE

    @property
    def is_open(self) -> bool:
        return self.state in (ConnectionState.IDLE, ConnectionState.AWAITING_RESPONSE)

    def open(self) -> None:
        """
        Connect to the endpoint.

        A connection that is already open is left as is; a broken one is
        closed and replaced.

        Raises:
            ConnectionFailedError: if the socket cannot be established
        """
        if self.is_open:
            return
        if self._sock is not None:
            self.close()

        host, port = self.endpoint
        try:
            sock = socket.create_connection((host, port), timeout=self.timeout)
        except OSError as e:
            raise ConnectionFailedError(f"Could not connect to {self.endpoint}: {e}") from e

        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            logger.debug(f"TCP_NODELAY not supported for {self.endpoint}")

        self._wrap(sock)
        logger.info(f"Connected to {self.endpoint}")

    def close(self) -> None:
        """
        Release the socket. Safe to call repeatedly.

        Errors while closing are logged, never raised.
        """
        streams = (self._writer, self._reader, self._sock)
        self._sock = self._reader = self._writer = None
        was_open = any(s is not None for s in streams)
        self.state = ConnectionState.CLOSED

        for stream in streams:
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as e:
                logger.warning(f"Error closing connection to {self.endpoint}: {e}")

        if was_open:
            logger.debug(f"Connection to {self.endpoint} closed")

    @contextmanager
    def exchange(self) -> Iterator["Connection"]:
        """
        Scope one request/response round trip.

        The state check and the move to AWAITING_RESPONSE happen under a
        lock, so of two threads sharing a connection only one gets in.

        Raises:
            ProtocolStateError: if a response is already outstanding
            ConnectionFailedError: if the connection is closed or broken
        """
        with self._state_lock:
            if self.state is ConnectionState.AWAITING_RESPONSE:
                raise ProtocolStateError(
                    f"A request to {self.endpoint} is still awaiting its response"
                )
            if self.state is not ConnectionState.IDLE:
                raise ConnectionFailedError(
                    f"Connection to {self.endpoint} is {self.state.value}; reopen it first"
                )
            self.state = ConnectionState.AWAITING_RESPONSE

        try:
            yield self
        except BaseException:
            self.state = ConnectionState.BROKEN
            raise
        self.state = ConnectionState.IDLE

    def _require_streams(self) -> None:
        if self._reader is None or self._writer is None:
            raise ConnectionFailedError(f"Connection to {self.endpoint} is not open")

    def send_framed(self, payload: bytes) -> None:
        """
        Write ``[len][payload]`` and flush.

        Raises:
            ConnectionFailedError: on any socket error
        """
        self._require_streams()
        try:
            self._writer.write(frame(payload))
            self._writer.flush()
        except OSError as e:
            raise ConnectionFailedError(f"Send to {self.endpoint} failed: {e}") from e

    def read_exactly(self, n: int) -> bytes:
        """
        Block until exactly ``n`` bytes arrive.

        Raises:
            FramingError: if the stream ends first
            ConnectionFailedError: on any socket error
        """
        self._require_streams()
        try:
            data = self._reader.read(n)
        except OSError as e:
            raise ConnectionFailedError(f"Receive from {self.endpoint} failed: {e}") from e

        if data is None or len(data) < n:
            received = len(data or b"")
            raise FramingError(
                f"premature end of stream from {self.endpoint}: "
                f"expected {n} bytes, got {received}",
                expected=n,
                received=received,
            )
        return data

    def read_byte(self) -> int:
        return self.read_exactly(1)[0]

    def receive_framed(self) -> bytes:
        """Read a length-prefixed message body."""
        return self.read_exactly(read_int32(self))

    def __enter__(self) -> "Connection":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Connection(endpoint={self.endpoint}, state={self.state.value})"
