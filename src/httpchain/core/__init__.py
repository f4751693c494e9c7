"""
=============================================================================
CORE NETWORKING
=============================================================================

    SocketServer   listening socket + accept loop
    Connection     one client socket: buffered reads, byte sink for responses
    ThreadPool     worker threads, one connection per task

=============================================================================
"""

from .connection import Connection, ConnectionState, RequestTooLarge
from .socket_server import SocketServer
from .thread_pool import ThreadPool

__all__ = [
    "Connection",
    "ConnectionState",
    "RequestTooLarge",
    "SocketServer",
    "ThreadPool",
]
