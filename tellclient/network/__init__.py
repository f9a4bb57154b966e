"""Network module for tell-client."""

from .connection import Connection, ConnectionState

__all__ = ["Connection", "ConnectionState"]
