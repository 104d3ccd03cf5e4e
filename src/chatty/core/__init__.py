"""
=============================================================================
CORE CONNECTION COMPONENTS
=============================================================================

The low-level pieces the connection manager is built from.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            LISTENER                                  │
    │  • Binds host:port and runs the accept() loop in its own thread     │
    │  • Counts accept failures, gives up after too many in a row         │
    │  • Closing it is the way to stop the loop                           │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ accepted sockets
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                       CONNECTION REGISTRY                            │
    │  • id → Connection map, ordered id list, id counter                 │
    │  • Shared by the accept thread, handler threads and the REPL        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ one handler thread each
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                           CONNECTION                                 │
    │  • Wraps one peer socket                                            │
    │  • Passive read/print loop, raw send, idempotent close              │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionDirection, ConnectionState
from .listener import Listener
from .registry import ConnectionRegistry

__all__ = [
    "Connection",           # One peer link - socket, id, read loop
    "ConnectionDirection",  # INBOUND / OUTBOUND
    "ConnectionState",      # OPEN → CLOSING → CLOSED
    "ConnectionRegistry",   # Shared store of live connections
    "Listener",             # Listening socket + accept loop
]
