"""
=============================================================================
PEER CONNECTION
=============================================================================

This module wraps one TCP peer link: the socket, who is on the other end,
and the id the user refers to it by.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

There is no framing on the wire. A "message" is just the bytes written by
one send command, and the peer may read them in pieces or glued to the next
message:

    Peer A sends:
        send 1 hello
        send 1 world

    Peer B might print:
        Message: "helloworld"      (both combined)
        Message: "hel" / "lo"      (split)
        Message: "hello" / "world" (as sent)

The handler prints whatever each recv() returns, as-is.

=============================================================================
CONNECTION LIFECYCLE
=============================================================================

    accept() / dial  ──►  registered  ──►  handler thread: run()
                                                │
                          ┌─────────────────────┼───────────────────────┐
                          │                     │                       │
                      peer closed        terminate / exit          read error
                          │                     │                       │
                          └─────────────────────┼───────────────────────┘
                                                ▼
                                   handler returns (finally:)
                                     ├── deregister
                                     └── close()   (idempotent)

    OPEN ──────► CLOSING ──────► CLOSED

close() may be called by the user (terminate/exit) and by the handler's own
cleanup at the same time. Whoever gets the lock first closes the socket; the
other call is a no-op.

=============================================================================
"""

import socket
import threading
import time
import logging
from enum import Enum
from dataclasses import dataclass, field

from ..console import PROMPT, OutputSink


logger = logging.getLogger(__name__)


class ConnectionDirection(Enum):
    """Which side opened the connection."""
    INBOUND = "inbound"    # Accepted by our listener
    OUTBOUND = "outbound"  # Dialed by the connect command


class ConnectionState(Enum):
    """
    Connection lifecycle states.

    Only close() moves a connection out of OPEN.
    """
    OPEN = "open"        # Registered, handler reading
    CLOSING = "closing"  # close() in progress
    CLOSED = "closed"    # Socket released


@dataclass(eq=False)
class Connection:
    """
    Represents one peer connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. IDENTITY                                                         │
    │     └── id: assigned once by the registry, never reused              │
    │     └── remote_ip / remote_port: used for duplicate detection        │
    │                                                                      │
    │  2. PASSIVE READ LOOP (run)                                          │
    │     └── Blocks in recv(), prints every chunk to the console         │
    │     └── Returns on EOF, reset, or once the socket is closed          │
    │                                                                      │
    │  3. WRITING (send)                                                   │
    │     └── Raw bytes, no framing, no acknowledgment                     │
    │                                                                      │
    │  4. IDEMPOTENT CLOSE                                                 │
    │     └── shutdown(SHUT_RDWR) wakes a blocked recv()                   │
    │     └── Safe to call from several threads, any number of times       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        id: Unique connection identifier (shown by list).
        socket: The connected socket. Owned by the handler thread.
        remote_ip: Peer IP address.
        remote_port: Peer port.
        direction: INBOUND or OUTBOUND.
        state: Current lifecycle state.
        created_at: Timestamp when the connection was registered.
        bytes_received: Bytes read by run().
        bytes_sent: Bytes written by send().
    """

    # Required parameters
    id: int
    socket: socket.socket
    remote_ip: str
    remote_port: int

    # Defaults
    direction: ConnectionDirection = ConnectionDirection.INBOUND
    buffer_size: int = 4096
    state: ConnectionState = ConnectionState.OPEN
    created_at: float = field(default_factory=time.time)
    bytes_received: int = 0
    bytes_sent: int = 0

    # Internal state (not shown in repr for cleaner logs)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _send_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        """
        Put the socket in blocking mode.

        Dialed sockets still carry the connect timeout, and a read timeout
        would end an idle conversation. The handler blocks until data,
        EOF or close.
        """
        self.socket.setblocking(True)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def address(self) -> tuple[str, int]:
        """The peer's (ip, port)."""
        return (self.remote_ip, self.remote_port)

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    # =========================================================================
    # READING: the passive read/print loop
    # =========================================================================

    def run(self, sink: OutputSink) -> None:
        """
        Print everything the peer sends until the connection ends.

        This is the body of the connection's handler thread. It never
        raises for socket problems; any way the stream ends is a normal
        return, and the caller's cleanup takes it from there.

        Args:
            sink: Where incoming messages are printed.
        """
        while True:
            try:
                data = self.socket.recv(self.buffer_size)
            except OSError as e:
                # Reset by peer, or our own close() pulled the socket away
                if self.is_open:
                    logger.debug(f"[{self.id}] Read failed: {e}")
                return

            if not data:
                if self.is_open:
                    sink.out(
                        "\nConnection %d (%s:%d) was closed by the peer\n\n%s",
                        self.id, self.remote_ip, self.remote_port, PROMPT,
                    )
                return

            self.bytes_received += len(data)
            sink.out(
                "\n\nMessage received from %s\nSender's Port: %d\nMessage: \"%s\"\n\n%s",
                self.remote_ip, self.remote_port,
                data.decode("utf-8", errors="replace"), PROMPT,
            )

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Write raw bytes to the peer.

        sendall() keeps writing until every byte is handed to the kernel.
        The lock stops two concurrent sends from interleaving their bytes.

        Args:
            data: Bytes to send.

        Returns:
            True if the write succeeded, False if the connection is gone.
        """
        try:
            with self._send_lock:
                self.socket.sendall(data)
                self.bytes_sent += len(data)
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """
        Close the connection. Idempotent and thread-safe.

        1. shutdown(SHUT_RDWR): sends FIN and wakes any thread blocked in
           recv() on this socket (a bare close() does not on Linux).
        2. close(): releases the file descriptor.
        """
        with self._close_lock:
            if self.state is ConnectionState.CLOSED:
                return  # Already closed

            self.state = ConnectionState.CLOSING

            try:
                self.socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Peer already gone, or never fully connected

            try:
                self.socket.close()
            except OSError:
                pass

            self.state = ConnectionState.CLOSED

        logger.debug(
            f"[{self.id}] Connection closed after {self.age:.1f}s "
            f"(rx={self.bytes_received} tx={self.bytes_sent})"
        )

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Ensure the connection is closed."""
        self.close()
        return False  # Don't suppress exceptions
