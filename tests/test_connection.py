"""
Tests for the blocking Connection

These tests use a socket pair, so no server is involved:
- Framed sends and exact-length reads
- Premature end of stream
- The IDLE -> AWAITING_RESPONSE -> IDLE state machine
- Open / close lifecycle

Run with: python -m pytest tests/test_connection.py -v
"""

import socket
import threading

import pytest

from conftest import find_free_port
from tellclient.cluster.endpoints import Endpoint
from tellclient.network.connection import Connection, ConnectionState
from tellclient.protocol.errors import ConnectionFailedError, FramingError, ProtocolStateError


def recv_exactly(sock: socket.socket, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            break
        data += chunk
    return data


class TestFraming:
    """Test framed writes and exact reads."""

    def test_send_framed_prefixes_length(self, socket_pair):
        conn, peer = socket_pair
        conn.send_framed(b"hello")
        assert recv_exactly(peer, 9) == b"\x05\x00\x00\x00hello"

    def test_read_exactly(self, socket_pair):
        conn, peer = socket_pair
        peer.sendall(b"abcdef")
        assert conn.read_exactly(4) == b"abcd"
        assert conn.read_exactly(2) == b"ef"

    def test_read_byte(self, socket_pair):
        conn, peer = socket_pair
        peer.sendall(b"\x02")
        assert conn.read_byte() == 2

    def test_receive_framed(self, socket_pair):
        conn, peer = socket_pair
        peer.sendall(b"\x03\x00\x00\x00xyz")
        assert conn.receive_framed() == b"xyz"

    def test_premature_end_of_stream(self, socket_pair):
        """Two of four length bytes, then the peer hangs up."""
        conn, peer = socket_pair
        peer.sendall(b"\x01\x00")
        peer.shutdown(socket.SHUT_WR)

        with pytest.raises(FramingError) as exc_info:
            conn.read_exactly(4)
        assert exc_info.value.expected == 4
        assert exc_info.value.received == 2


class TestStateMachine:
    """Test one-request-at-a-time enforcement."""

    def test_exchange_returns_to_idle(self, socket_pair):
        conn, peer = socket_pair
        assert conn.state is ConnectionState.IDLE

        peer.sendall(b"\x00")
        with conn.exchange():
            assert conn.state is ConnectionState.AWAITING_RESPONSE
            conn.send_framed(b"req")
            assert conn.read_byte() == 0

        assert conn.state is ConnectionState.IDLE

    def test_second_request_while_awaiting(self, socket_pair):
        conn, _ = socket_pair
        with conn.exchange():
            with pytest.raises(ProtocolStateError):
                with conn.exchange():
                    pass
            assert conn.state is ConnectionState.AWAITING_RESPONSE

    def test_second_thread_while_awaiting(self, socket_pair):
        conn, _ = socket_pair
        entered = threading.Event()
        release = threading.Event()

        def hold_exchange():
            with conn.exchange():
                entered.set()
                release.wait(5)

        holder = threading.Thread(target=hold_exchange)
        holder.start()
        try:
            assert entered.wait(5)
            with pytest.raises(ProtocolStateError):
                with conn.exchange():
                    pass
        finally:
            release.set()
            holder.join()

        assert conn.state is ConnectionState.IDLE

    def test_failure_breaks_connection(self, socket_pair):
        conn, peer = socket_pair
        peer.shutdown(socket.SHUT_WR)

        with pytest.raises(FramingError):
            with conn.exchange():
                conn.read_exactly(1)

        assert conn.state is ConnectionState.BROKEN
        with pytest.raises(ConnectionFailedError, match="broken"):
            with conn.exchange():
                pass

    def test_closed_connection_refuses_exchange(self, socket_pair):
        conn, _ = socket_pair
        conn.close()
        assert conn.state is ConnectionState.CLOSED
        with pytest.raises(ConnectionFailedError):
            with conn.exchange():
                pass

    def test_reads_after_close_fail(self, socket_pair):
        conn, _ = socket_pair
        conn.close()
        with pytest.raises(ConnectionFailedError):
            conn.read_exactly(1)
        with pytest.raises(ConnectionFailedError):
            conn.send_framed(b"x")


class TestLifecycle:
    """Test open and close."""

    def test_close_is_idempotent(self, socket_pair):
        conn, _ = socket_pair
        conn.close()
        conn.close()
        assert conn.state is ConnectionState.CLOSED
        assert not conn.is_open

    def test_open_refused(self):
        conn = Connection(Endpoint("127.0.0.1", find_free_port()))
        with pytest.raises(ConnectionFailedError):
            conn.open()
        assert conn.state is ConnectionState.CLOSED

    def test_open_and_reopen_after_failure(self):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(2)
        endpoint = Endpoint("127.0.0.1", listener.getsockname()[1])

        try:
            with Connection(endpoint) as conn:
                assert conn.state is ConnectionState.IDLE
                first, _ = listener.accept()

                first.close()
                with pytest.raises((FramingError, ConnectionFailedError)):
                    with conn.exchange():
                        conn.read_exactly(1)
                assert conn.state is ConnectionState.BROKEN

                conn.open()
                second, _ = listener.accept()
                assert conn.state is ConnectionState.IDLE

                second.sendall(b"\x00")
                with conn.exchange():
                    assert conn.read_byte() == 0
                second.close()

            assert conn.state is ConnectionState.CLOSED
        finally:
            listener.close()

    def test_repr(self, socket_pair):
        conn, _ = socket_pair
        assert repr(conn) == "Connection(endpoint=peer:1, state=idle)"

    def test_attach_uses_peer_address(self):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]

        try:
            conn = Connection.attach(socket.create_connection(("127.0.0.1", port)))
            accepted, _ = listener.accept()
            assert conn.endpoint == Endpoint("127.0.0.1", port)
            assert conn.state is ConnectionState.IDLE
            conn.close()
            accepted.close()
        finally:
            listener.close()

    def test_attach_without_peer_address(self):
        local, peer = socket.socketpair()
        conn = Connection.attach(local)
        try:
            assert conn.endpoint == Endpoint("<attached>", 0)
            assert conn.is_open
        finally:
            conn.close()
            peer.close()
