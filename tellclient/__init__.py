"""
tell-client: TellStore Binary Protocol Client

A synchronous client for the TellStore key-value server, speaking its
length-framed little-endian binary protocol over raw TCP sockets.
Built to be driven by a benchmarking harness (one client per worker
thread).
"""

from .client import TellStoreClient
from .protocol.commands import Opcode, Status

__version__ = "1.0.0"

__all__ = ["TellStoreClient", "Opcode", "Status"]
