"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

The only state shared between threads: which connections are alive, in
what order they were created, and which id comes next.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ConnectionRegistry                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   _connections   {id: Connection}        guarded by _conns_lock     │
    │        ▲  insert (register)                                          │
    │        ▼  delete (handler cleanup)                                   │
    │                                                                      │
    │   _ids           [1, 2, 3, ...]          guarded by _ids_lock       │
    │        append only, insertion order, used by list                    │
    │                                                                      │
    │   _counter       1, 2, 3, ...            guarded by _counter_lock   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The mapping and the id sequence have separate locks and are never updated
as one atomic step. So they can disagree for a moment:

    - an id can be in _ids after its connection left _connections
      (the handler finished) - listing skips it;
    - a connection can be in _connections before its id is appended
      - listing misses it until the append lands.

Duplicate peers are prevented by insert_if_absent(), which checks the
(ip, port) and inserts while holding the mapping lock.

=============================================================================
"""

import threading
import logging
from typing import Callable, Optional

from .connection import Connection
from ..errors import ConnectionExists


logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Thread-safe store of live connections plus an ordered id index.

    Usage:
        registry = ConnectionRegistry()

        conn = registry.insert_if_absent(
            "10.0.0.2", 5000,
            lambda conn_id: Connection(conn_id, sock, "10.0.0.2", 5000),
        )
        registry.load(conn.id)       # -> conn
        registry.snapshot_ids()      # -> [1]
        registry.delete(conn.id)
    """

    def __init__(self):
        self._connections: dict[int, Connection] = {}
        self._conns_lock = threading.Lock()

        # Only used to produce a stable, sorted listing
        self._ids: list[int] = []
        self._ids_lock = threading.Lock()

        self._next_id = 1
        self._counter_lock = threading.Lock()

    def __len__(self) -> int:
        with self._conns_lock:
            return len(self._connections)

    def __contains__(self, conn_id: int) -> bool:
        with self._conns_lock:
            return conn_id in self._connections

    # =========================================================================
    # ID ALLOCATION
    # =========================================================================

    def next_id(self) -> int:
        """
        Issue the next connection id.

        Ids start at 1, strictly increase, and are never handed out twice,
        even for connections that are later closed.
        """
        with self._counter_lock:
            conn_id = self._next_id
            self._next_id += 1
            return conn_id

    # =========================================================================
    # MAPPING
    # =========================================================================

    def load(self, conn_id: int) -> Optional[Connection]:
        """Get a connection by id, or None if it is not (or no longer) registered."""
        with self._conns_lock:
            return self._connections.get(conn_id)

    def delete(self, conn_id: int) -> Optional[Connection]:
        """Remove a connection. Removing an unknown id is a no-op."""
        with self._conns_lock:
            return self._connections.pop(conn_id, None)

    def connections(self) -> list[Connection]:
        """
        Snapshot of the registered connections.

        Safe to iterate while handlers remove themselves; an entry in the
        snapshot may already be gone from the registry.
        """
        with self._conns_lock:
            return list(self._connections.values())

    def find(self, ip: str, port: int) -> Optional[Connection]:
        """Find the live connection to ip:port, if any."""
        with self._conns_lock:
            return self._find_locked(ip, port)

    def exists(self, ip: str, port: int) -> bool:
        return self.find(ip, port) is not None

    def insert_if_absent(
        self,
        ip: str,
        port: int,
        factory: Callable[[int], Connection],
    ) -> Connection:
        """
        Atomically create and insert a connection unless ip:port is taken.

        The duplicate check, id allocation and insert all happen under the
        mapping lock, so two threads registering the same peer cannot both
        succeed. The id is appended to the ordered sequence afterwards,
        under its own lock.

        Args:
            ip: Peer IP address.
            port: Peer port.
            factory: Builds the Connection from its freshly issued id.

        Returns:
            The registered connection.

        Raises:
            ConnectionExists: A connection to ip:port is already registered.
                              No id is consumed.
        """
        with self._conns_lock:
            if self._find_locked(ip, port) is not None:
                raise ConnectionExists(ip, port)

            conn = factory(self.next_id())
            self._connections[conn.id] = conn

        self.append_id(conn.id)
        return conn

    def _find_locked(self, ip: str, port: int) -> Optional[Connection]:
        for conn in self._connections.values():
            if conn.remote_ip == ip and conn.remote_port == port:
                return conn
        return None

    # =========================================================================
    # ORDERED ID SEQUENCE
    # =========================================================================

    def append_id(self, conn_id: int) -> None:
        with self._ids_lock:
            self._ids.append(conn_id)

    def snapshot_ids(self) -> list[int]:
        """Copy of every id ever registered, in insertion order."""
        with self._ids_lock:
            return list(self._ids)

    def ordered(self) -> list[Connection]:
        """
        Live connections in insertion order.

        Ids whose connection has been removed since the snapshot are
        skipped silently. Each id appears at most once.
        """
        result = []
        for conn_id in self.snapshot_ids():
            conn = self.load(conn_id)
            if conn is None:
                continue  # Terminated while we were listing
            result.append(conn)
        return result
