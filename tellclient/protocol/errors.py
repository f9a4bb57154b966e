"""
Client Error Types

Transport failures are raised as exceptions inside the client and
converted to Status.ERROR at the operation boundary. NOT_FOUND and
ERROR status bytes sent by the server are ordinary Status values and
never appear here.
"""


class ClientError(Exception):
    """Base class for all tell-client errors."""


class ConnectionFailedError(ClientError, ConnectionError):
    """
    The socket could not be opened, failed mid-exchange, or the
    connection was used after it was closed or broken.
    """


class FramingError(ClientError):
    """
    A declared length could not be satisfied by the stream.

    Raised on premature end of stream and on undecodable text.
    """

    def __init__(self, message: str, expected: int = 0, received: int = 0):
        super().__init__(message)
        self.expected = expected
        self.received = received


class ProtocolStateError(ClientError):
    """A request was issued while another response is still outstanding."""
