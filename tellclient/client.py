"""
TellStore Operation Client

The harness-facing adapter: one TellStoreClient per worker thread, each
bound to one server endpoint through one private Connection.

Lifecycle:
    client = TellStoreClient(properties)
    client.init()        # select endpoint, connect
    client.read(...)     # any number of sequential operations
    client.cleanup()     # close the socket

Every operation is a single blocking round trip. Transport failures are
logged and reported as Status.ERROR; they never escape to the harness.
"""

import logging
from typing import Callable, Dict, Mapping, MutableMapping, Optional, TypeVar

from .cluster.endpoints import Endpoint, EndpointSelector, RotatingCounter
from .config.settings import Settings, settings
from .network.connection import Connection
from .protocol.codec import BytesLike, RecordEncoding, decode_record, encode_request, read_status
from .protocol.commands import (
    DEFAULT_OPCODE_MAPPING,
    FieldSet,
    Opcode,
    Operation,
    Request,
    Response,
    Status,
    get_opcode_mapping,
)
from .protocol.errors import ClientError, ConnectionFailedError, ProtocolStateError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TellStoreClient:
    """
    Synchronous client for a TellStore server.

    Attributes:
        properties: Harness configuration (``ycsb-tell.*`` keys)
        settings: Effective settings, resolved by init()
        endpoint: Server this instance is bound to, set by init()
        connection: The private Connection, set by init()
    """

    def __init__(
            self,
            properties: Optional[Mapping[str, str]] = None,
            counter: Optional[RotatingCounter] = None,
            base_settings: Optional[Settings] = None,
    ):
        """
        Create an uninitialized client.

        Args:
            properties: Harness configuration overriding base_settings
            counter: Rotation counter for endpoint selection (defaults to
                the process-wide counter)
            base_settings: Defaults to use (the module settings if omitted)
        """
        self.properties: Dict[str, str] = dict(properties or {})
        self.counter = counter
        self._base_settings = base_settings if base_settings is not None else settings

        self.settings: Optional[Settings] = None
        self.endpoint: Optional[Endpoint] = None
        self.connection: Optional[Connection] = None
        self.record_encoding = RecordEncoding.LEGACY
        self.opcodes: Dict[Operation, Opcode] = get_opcode_mapping(DEFAULT_OPCODE_MAPPING)

        self._total_requests = 0
        self._failed_requests = 0

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def init(self) -> None:
        """
        Resolve configuration, pick an endpoint and connect.

        Raises:
            ValueError: if the configuration is invalid
            ConnectionFailedError: if the server cannot be reached
        """
        self.settings = self._base_settings.from_properties(self.properties)
        self.record_encoding = self.settings.record_encoding
        self.opcodes = self.settings.opcodes

        selector = EndpointSelector.from_config(
            self.settings.SERVER, self.settings.SERVER_PORT, self.counter
        )
        self.endpoint = selector.select()
        self.connection = Connection(self.endpoint, timeout=self.settings.TIMEOUT)

        logger.debug(
            f"Client bound to {self.endpoint} "
            f"(record encoding={self.record_encoding.value}, "
            f"opcode mapping={self.settings.OPCODE_MAPPING})"
        )

        try:
            self.connection.open()
        except ConnectionFailedError as e:
            logger.error(f"Client initialization failed: {e}")
            raise

    def cleanup(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self.connection is not None:
            self.connection.close()

    def reopen(self) -> None:
        """
        Replace a closed or broken connection to the same endpoint.

        Raises:
            ConnectionFailedError: if the client was never initialized or
                the server cannot be reached
        """
        if self.connection is None:
            raise ConnectionFailedError("Client is not initialized")
        self.connection.close()
        self.connection.open()

    def __enter__(self) -> "TellStoreClient":
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()

    # ========================================================================
    # Operations
    # ========================================================================

    def read(
            self,
            table: str,
            key: str,
            fields: FieldSet = None,
            result: Optional[MutableMapping[str, bytes]] = None,
    ) -> Status:
        """
        Read a record.

        Args:
            table: Table name
            key: Record key
            fields: Fields to return; None returns every field
            result: Filled with the decoded record on success, untouched
                otherwise

        Returns:
            Status.OK or Status.ERROR
        """
        response = self.read_record(table, key, fields)
        if response.status is Status.OK and result is not None:
            result.update(response.record)
        return response.status

    def read_record(self, table: str, key: str, fields: FieldSet = None) -> Response:
        """
        Read a record and return it with its status.

        The read response carries no status byte: a fully decoded
        record is the success signal.
        """
        request = Request(self.opcodes[Operation.READ], table, key, fields)
        record = self._execute(Operation.READ, request, decode_record)
        if record is None:
            return Response.error()
        return Response.ok(record)

    def scan(
            self,
            table: str,
            start_key: str,
            record_count: int,
            fields: FieldSet = None,
            result=None,
    ) -> Status:
        """Scans are not supported by the server protocol."""
        logger.debug(f"scan {table}/{start_key} ({record_count} records) not implemented")
        return Status.NOT_IMPLEMENTED

    def update(self, table: str, key: str, values: Mapping[str, BytesLike]) -> Status:
        """Update fields of an existing record."""
        return self._write(Operation.UPDATE, table, key, values)

    def insert(self, table: str, key: str, values: Mapping[str, BytesLike]) -> Status:
        """Insert a new record."""
        return self._write(Operation.INSERT, table, key, values)

    def delete(self, table: str, key: str) -> Status:
        """Delete a record; NOT_FOUND when the key does not exist."""
        request = Request(self.opcodes[Operation.DELETE], table, key)
        status = self._execute(Operation.DELETE, request, read_status)
        return status if status is not None else Status.ERROR

    def _write(self, operation: Operation, table: str, key: str,
               values: Mapping[str, BytesLike]) -> Status:
        request = Request(self.opcodes[operation], table, key, values)
        status = self._execute(operation, request, read_status)
        return status if status is not None else Status.ERROR

    def _execute(self, operation: Operation, request: Request,
                 decode: Callable[[Connection], T]) -> Optional[T]:
        """
        Run one round trip and decode the response.

        Returns:
            The decoded response, or None if the exchange failed
        """
        self._total_requests += 1
        target = f"{operation.value} {request.table}/{request.key}"

        try:
            body = encode_request(request, self.record_encoding)
        except (TypeError, ValueError) as e:
            self._failed_requests += 1
            logger.error(f"{target}: cannot encode request: {e}")
            return None

        try:
            connection = self._require_connection()
            with connection.exchange():
                connection.send_framed(body)
                return decode(connection)
        except ProtocolStateError:
            raise
        except (ClientError, OSError) as e:
            self._failed_requests += 1
            logger.error(f"{target} failed on {self.endpoint}: {e}")
            return None

    def _require_connection(self) -> Connection:
        if self.connection is None:
            raise ConnectionFailedError("Client is not initialized; call init() first")
        return self.connection

    def get_stats(self) -> dict:
        """
        Get client statistics.

        Returns:
            Dictionary with the endpoint, connection state and request counts.
        """
        return {
            "endpoint": str(self.endpoint) if self.endpoint else None,
            "state": self.connection.state.value if self.connection else "uninitialized",
            "total_requests": self._total_requests,
            "failed_requests": self._failed_requests,
        }
