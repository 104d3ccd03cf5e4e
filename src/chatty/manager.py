"""
=============================================================================
CONNECTION MANAGER
=============================================================================

Ties the listener, the registry and the connection handlers together, and
implements the operations behind the user's commands.

=============================================================================
HOW A CONNECTION IS BORN
=============================================================================

There are two ways in, and both go through the same _register() routine:

    INBOUND                                 OUTBOUND
    ───────                                 ────────
    accept thread                           connect(destination, port)
       │                                       │  duplicate?  → ConnectionExists
       │ accept()                              │  own port?   → SelfConnection
       │                                       │  bad ip?     → InvalidAddress
       │                                       │  dial (10s)  → DialTimeout
       ▼                                       ▼
    ┌──────────────────────────────────────────────────────────────────┐
    │ _register(sock, (ip, port), direction)                           │
    │   1. registry.insert_if_absent()   new id, mapping, ordered ids │
    │   2. tell the user                                               │
    │   3. start the handler thread                                    │
    └──────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    handler thread:  conn.run()  ...blocks until the stream ends...
                     finally:
                        registry.delete(conn.id)
                        conn.close()

=============================================================================
WHO TOUCHES WHAT
=============================================================================

    Thread              Reads                   Writes
    ─────────────────   ─────────────────────   ──────────────────────────
    accept thread       registry (dup check)    registry (insert)
    handler threads     own socket              registry (delete), close
    REPL (main)         registry (list, ...)    sockets (send, close)

Command operations never start threads, and never remove entries from the
registry: terminate() only closes the socket, and the handler that owns it
notices and cleans up after itself.

=============================================================================
SHUTDOWN
=============================================================================

exit() closes every connection and the listener, then sets a shutdown
event. It does not end the process; the CLI waits on the event and exits
once it returns to its loop. exit() does not wait for handlers to finish
their cleanup.

=============================================================================
"""

import socket
import logging
import ipaddress
import threading
from typing import Optional, Tuple, Union

from .config import ChatConfig
from .console import PROMPT, Console, OutputSink
from .core import Connection, ConnectionDirection, ConnectionRegistry, Listener
from .errors import (
    ConnectionExists,
    DialTimeout,
    InvalidAddress,
    InvalidConnectionID,
    MessageTooLong,
    SelfConnection,
)
from .eventlog import ConnectionEvent, EventLogger


logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    A chat peer: listener and dialer sharing one set of connections.

    =========================================================================
    USAGE
    =========================================================================

        manager = ConnectionManager(ChatConfig(host="127.0.0.1", port=4545))
        manager.start()                      # bind + accept thread

        conn = manager.connect("127.0.0.1", 4546)
        manager.send(conn.id, "hello")
        manager.list_connections()
        manager.terminate(conn.id)

        manager.exit()
        manager.wait_for_shutdown()

    =========================================================================
    COMPONENTS
    =========================================================================

    - ChatConfig: host, port, timeouts, limits
    - Listener: listening socket and accept loop
    - ConnectionRegistry: live connections, owned by this manager
    - OutputSink: where user-facing messages go (Console by default)
    - EventLogger: structured open/close/reject log entries

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        sink: Optional[OutputSink] = None,
        registry: Optional[ConnectionRegistry] = None,
    ):
        """
        Args:
            config: Chat configuration. Uses defaults if not provided.
            sink: Output sink for user-facing messages.
            registry: Connection registry. A fresh one if not provided.
        """
        self.config = config or ChatConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.sink = sink or Console()
        self.registry = registry or ConnectionRegistry()

        self._listener = Listener(self.config, self.sink)
        self._events = EventLogger(log_format=self.config.log_format)

        self._accept_thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def host(self) -> str:
        return self._listener.address[0]

    @property
    def port(self) -> int:
        """The port we listen on (the real one once started)."""
        return self._listener.address[1]

    @property
    def listener(self) -> Listener:
        return self._listener

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_event.is_set()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Bind the listener and start the accept thread.

        Raises:
            OSError: The listen address could not be bound.
        """
        if self._accept_thread is not None:
            return  # Already started

        self._listener.bind()

        self._accept_thread = threading.Thread(
            target=self._listener.serve,
            args=(self._accept,),
            name="chatty-accept",
            daemon=True,
        )
        self._accept_thread.start()

        logger.info(f"Chat peer started on {self.host}:{self.port}")

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until exit() has run.

        Returns:
            True if shut down, False if the timeout expired first.
        """
        return self._shutdown_event.wait(timeout)

    # =========================================================================
    # REGISTRATION (shared by inbound and outbound)
    # =========================================================================

    def _accept(self, sock: socket.socket, address: Tuple[str, int]) -> Connection:
        """Called by the accept thread for each inbound socket."""
        return self._register(sock, address, ConnectionDirection.INBOUND)

    def _register(
        self,
        sock: socket.socket,
        address: Tuple[str, int],
        direction: ConnectionDirection,
    ) -> Connection:
        """
        Register a connected socket and start its handler.

        Raises:
            ConnectionExists: ip:port is already registered. The socket is
                              left open for the caller to dispose of.
        """
        ip, port = address

        try:
            conn = self.registry.insert_if_absent(
                ip, port,
                lambda conn_id: Connection(
                    id=conn_id,
                    socket=sock,
                    remote_ip=ip,
                    remote_port=port,
                    direction=direction,
                    buffer_size=self.config.buffer_size,
                ),
            )
        except ConnectionExists:
            self._events.emit(ConnectionEvent("rejected", None, direction.value, ip, port))
            raise

        self._events.emit(ConnectionEvent("opened", conn.id, direction.value, ip, port))

        if direction is ConnectionDirection.INBOUND:
            self.sink.out(
                "\nNew incoming connection: %d | %s:%d\n\n%s",
                conn.id, conn.remote_ip, conn.remote_port, PROMPT,
            )
        else:
            self.sink.out(
                "\nNew connection established: %d | %s:%d\n",
                conn.id, conn.remote_ip, conn.remote_port,
            )

        handler = threading.Thread(
            target=self._run_handler,
            args=(conn,),
            name=f"chatty-conn-{conn.id}",
            daemon=True,
        )
        try:
            handler.start()
        except RuntimeError:
            # No thread, so nobody else will clean this one up
            self.registry.delete(conn.id)
            conn.close()
            raise

        return conn

    def _run_handler(self, conn: Connection) -> None:
        """
        Body of a connection's handler thread.

        Whatever ends run(), the connection leaves the registry and its
        socket is closed.
        """
        try:
            conn.run(self.sink)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error: {e}")
        finally:
            self.registry.delete(conn.id)
            conn.close()
            self._events.emit(ConnectionEvent(
                "closed", conn.id, conn.direction.value,
                conn.remote_ip, conn.remote_port,
                duration_s=conn.age,
                bytes_received=conn.bytes_received,
                bytes_sent=conn.bytes_sent,
            ))

    # =========================================================================
    # COMMAND OPERATIONS
    # =========================================================================

    def connect(self, destination: str, port: Union[int, str]) -> Connection:
        """
        Dial a peer and register the connection.

        Args:
            destination: Peer IP address (IPv4 or IPv6 literal).
            port: Peer port, as int or decimal string.

        Returns:
            The new connection.

        Raises:
            InvalidAddress: port is not a port number, or destination is
                            not an IP address. No dial is attempted.
            ConnectionExists: Already connected to destination:port, in
                              any spelling of the address. No dial.
            SelfConnection: port is our own listening port.
            DialTimeout: The dial failed or timed out.
        """
        port_num = _parse_port(destination, port)

        try:
            address = ipaddress.ip_address(destination)
        except ValueError:
            address = None

        # The registry holds the canonical form getpeername() reports
        if address is not None:
            destination = str(address)

        if self.registry.exists(destination, port_num):
            raise ConnectionExists(destination, port_num)

        if port_num == self.port:
            raise SelfConnection(port_num)

        if address is None:
            raise InvalidAddress(destination, port)

        logger.debug(f"Dialing {destination}:{port_num} (timeout {self.config.dial_timeout}s)")
        try:
            sock = socket.create_connection(
                (destination, port_num),
                timeout=self.config.dial_timeout,
            )
        except OSError as e:
            logger.info(f"Dial to {destination}:{port_num} failed: {e}")
            raise DialTimeout(destination, port_num, e) from e

        peer = sock.getpeername()

        try:
            return self._register(sock, (peer[0], peer[1]), ConnectionDirection.OUTBOUND)
        except ConnectionExists:
            # Lost a race with an inbound connection from the same address
            sock.close()
            raise

    def list_connections(self) -> list[Connection]:
        """
        Print the table of live connections, ordered by id.

        Connections that end while the table is being built may be left
        out; none is shown twice.

        Returns:
            The connections that were printed.
        """
        rows = self.registry.ordered()

        self.sink.out("id |  IP Address   | Port\n")
        self.sink.out("---+---------------+-----\n")
        for conn in rows:
            self.sink.out("%2d | %-13s | %d\n", conn.id, conn.remote_ip, conn.remote_port)

        return rows

    def terminate(self, conn_id: Union[int, str]) -> None:
        """
        Close the connection with this id.

        The connection leaves the registry once its handler has noticed
        the close, which may be shortly after this returns.

        Raises:
            InvalidConnectionID: No such connection.
        """
        conn = self._lookup(conn_id)
        conn.close()
        self.sink.out("Connection %d terminated\n", conn.id)

    def send(self, conn_id: Union[int, str], message: Union[str, bytes]) -> None:
        """
        Write a message to a connection as raw bytes.

        A failed write is logged and reported on the console, not raised.

        Raises:
            MessageTooLong: The encoded message exceeds max_message_length.
            InvalidConnectionID: No such connection.
        """
        data = message if isinstance(message, bytes) else message.encode("utf-8")

        limit = self.config.max_message_length
        if len(data) > limit:
            raise MessageTooLong(len(data), limit)

        conn = self._lookup(conn_id)

        if conn.send(data):
            self.sink.out("Message sent to connection %d!\n", conn.id)
        else:
            self.sink.out_err("Message to connection %d could not be delivered\n", conn.id)

    def exit(self) -> None:
        """
        Close every connection and the listener, then signal shutdown.

        A connection that fails to close is reported on the error sink and
        the rest are still closed. Safe to call more than once.
        """
        if self._shutdown_event.is_set():
            return

        self.sink.out("Closing any established connections ..\n")

        # Snapshot; handlers remove themselves while we iterate
        for conn in self.registry.connections():
            try:
                conn.close()
            except Exception as e:
                logger.exception(f"[{conn.id}] Error closing connection: {e}")
                self.sink.out_err("Error closing connection %d: %s\n", conn.id, e)

        # Closing the listener also ends the accept loop
        self._listener.close()

        self.sink.out("Exiting program now .. bye!\n")
        logger.info("Chat peer shut down")
        self._shutdown_event.set()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _lookup(self, conn_id: Union[int, str]) -> Connection:
        try:
            key = int(conn_id)
        except (TypeError, ValueError):
            raise InvalidConnectionID(conn_id) from None

        conn = self.registry.load(key)
        if conn is None:
            raise InvalidConnectionID(conn_id)
        return conn


def _parse_port(destination: str, port: Union[int, str]) -> int:
    try:
        port_num = int(port)
    except (TypeError, ValueError):
        raise InvalidAddress(destination, port) from None

    if not 0 < port_num < 65536:
        raise InvalidAddress(destination, port)
    return port_num
