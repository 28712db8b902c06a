"""
=============================================================================
CORE NETWORKING
=============================================================================

    ┌──────────────────────────────────────────────────────────────────┐
    │ SocketServer   listening socket, accept() loop, signals           │
    └──────────────────────────────────────────────────────────────────┘
                                  │ Connection
                                  ▼
    ┌──────────────────────────────────────────────────────────────────┐
    │ ThreadPool     bounded queue + workers, 503 when full             │
    └──────────────────────────────────────────────────────────────────┘
                                  │ one task per connection
                                  ▼
    ┌──────────────────────────────────────────────────────────────────┐
    │ Connection     one request in, one response out, then close       │
    └──────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "ThreadPool",
]
