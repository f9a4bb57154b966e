"""
Endpoint Selection Module

Parses the configured server list and assigns one endpoint to each
client instance as it initializes.

Server list format:
    host                      -> single endpoint on the default port
    host:port                 -> single endpoint
    host1:port1;host2:port2   -> several endpoints, assigned round-robin

Assignment:
    index = counter.next() % len(endpoints)

The counter is shared by every client that uses the same selector
counter, so N initializations over M endpoints (N a multiple of M)
bind exactly N/M clients to each endpoint, whatever thread performs
them.
"""

import logging
import threading
from typing import List, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

ENDPOINT_SEPARATOR = ";"


class Endpoint(NamedTuple):
    """Address of one server instance."""
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def parse_endpoint(entry: str, default_port: int) -> Endpoint:
    """
    Parse a single ``host[:port]`` entry.

    Raises:
        ValueError: if the host is empty or the port is not a valid number
    """
    entry = entry.strip()
    if entry.startswith("["):
        host, bracket, rest = entry[1:].partition("]")
        if not bracket or (rest and not rest.startswith(":")):
            raise ValueError(f"Malformed bracketed host in endpoint: {entry!r}")
        port_text = rest[1:]
    else:
        host, sep, port_text = entry.rpartition(":")
        if not sep:
            host, port_text = entry, ""
        if ":" in host:
            raise ValueError(f"IPv6 address must be bracketed in endpoint: {entry!r}")

    if not host:
        raise ValueError(f"Missing host in endpoint: {entry!r}")

    if not port_text:
        port = default_port
    else:
        try:
            port = int(port_text)
        except ValueError:
            raise ValueError(f"Invalid port in endpoint: {entry!r}") from None

    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in endpoint: {entry!r}")
    return Endpoint(host, port)


def parse_endpoints(value: str, default_port: int) -> List[Endpoint]:
    """
    Split a semicolon-separated server list into endpoints.

    Blank entries are skipped; the order of the list is kept.

    Raises:
        ValueError: if no endpoint is configured or an entry is malformed
    """
    endpoints = [
        parse_endpoint(entry, default_port)
        for entry in value.split(ENDPOINT_SEPARATOR)
        if entry.strip()
    ]
    if not endpoints:
        raise ValueError(f"No endpoints configured in {value!r}")
    return endpoints


class RotatingCounter:
    """Monotonic counter whose fetch-and-increment is atomic across threads."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        """Return the current value and advance by one."""
        with self._lock:
            value = self._value
            self._value += 1
        return value

    @property
    def value(self) -> int:
        return self._value

    def reset(self, start: int = 0) -> None:
        with self._lock:
            self._value = start


# Process-wide counter used when a client is not given its own.
SHARED_COUNTER = RotatingCounter()


class EndpointSelector:
    """
    Round-robin assignment of endpoints to client instances.

    Usage:
        selector = EndpointSelector(parse_endpoints("a:1;b:2", 8713))
        endpoint = selector.select()
    """

    def __init__(self, endpoints: Sequence[Endpoint],
                 counter: Optional[RotatingCounter] = None):
        if not endpoints:
            raise ValueError("EndpointSelector needs at least one endpoint")
        self.endpoints = list(endpoints)
        self.counter = counter if counter is not None else SHARED_COUNTER

    @classmethod
    def from_config(cls, value: str, default_port: int,
                    counter: Optional[RotatingCounter] = None) -> "EndpointSelector":
        return cls(parse_endpoints(value, default_port), counter)

    def select(self) -> Endpoint:
        """Pick the endpoint for the next initializing client."""
        index = self.counter.next() % len(self.endpoints)
        endpoint = self.endpoints[index]
        logger.debug(f"Selected endpoint {index} of {len(self.endpoints)}: {endpoint}")
        return endpoint

    def __repr__(self) -> str:
        endpoints = ", ".join(str(e) for e in self.endpoints)
        return f"EndpointSelector(endpoints=[{endpoints}])"
