"""
=============================================================================
CHATTY - Peer-to-Peer TCP Chat
=============================================================================

One process is both a TCP listener and a dialer. Peers that connect to us
and peers we connect to end up in the same set of connections, which the
user manages from the terminal: connect, list, terminate, send, exit.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            ChatApp (REPL)                            │
    │                    CommandDispatcher  →  Console                     │
    └───────────────────────────────┬─────────────────────────────────────┘
                                    │ connect / list / terminate / send / exit
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ConnectionManager                           │
    │                                                                      │
    │   Listener ──accept──┐                  ┌──dial── connect()          │
    │                      ▼                  ▼                            │
    │                  _register()  →  ConnectionRegistry                  │
    │                      │                                               │
    │                      └──► handler thread per Connection              │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
QUICK START
=============================================================================

    from chatty import ChatConfig, ConnectionManager

    manager = ConnectionManager(ChatConfig(host="127.0.0.1", port=4545))
    manager.start()

    conn = manager.connect("127.0.0.1", 4546)
    manager.send(conn.id, "hello")

    manager.exit()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ChatConfig
from .manager import ConnectionManager
from .errors import ChatError

__all__ = ["ChatConfig", "ConnectionManager", "ChatError", "__version__"]
