"""
Cluster module for tell-client.

This module provides multi-server support:
- Parsing of the configured server list
- Round-robin assignment of client instances to servers
"""

from .endpoints import SHARED_COUNTER, Endpoint, EndpointSelector, RotatingCounter, parse_endpoints

__all__ = ['SHARED_COUNTER', 'Endpoint', 'EndpointSelector', 'RotatingCounter', 'parse_endpoints']
