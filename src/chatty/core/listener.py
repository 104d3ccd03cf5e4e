"""
=============================================================================
TCP LISTENER AND ACCEPT LOOP
=============================================================================

This module owns the listening socket: bind, listen, and the loop that
accepts inbound peers and hands them to the connection manager.

=============================================================================
SOCKET LIFECYCLE (Listener Side)
=============================================================================

    1. socket()    Create the listening socket
    2. bind()      Reserve host:port (port 0 = let the OS choose)
    3. listen()    Start queueing incoming connections
    4. accept()    Wait for a peer; returns a NEW socket for that peer
    5. close()     Stop accepting; this is also how the loop is cancelled

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── bind(host, port)
                    └───────────┬───────────┘
                                │ accept()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Peer 1    │         │ Peer 2    │         │ Peer 3    │
    │ handler   │         │ handler   │         │ handler   │
    └───────────┘         └───────────┘         └───────────┘

=============================================================================
ERROR POLICY
=============================================================================

    accept() result               action
    ─────────────────────────     ──────────────────────────────────────
    new socket                    reset error counter, hand to on_accept
    timeout (poll interval)       loop again (or stop if closed)
    error after close()           stop silently: shutdown was requested
    any other error               count it, warn; more than
                                  max_accept_errors in a row: close the
                                  listener for good (ListenerFatal)

A fatal listener only stops inbound connections. Dialing out and the
connections already established keep working.

=============================================================================
"""

import socket
import logging
import threading
from typing import Callable, Optional, Tuple

from ..config import ChatConfig
from ..console import PROMPT, OutputSink
from ..errors import AcceptFailure, ConnectionExists, ListenerFatal


logger = logging.getLogger(__name__)


AcceptCallback = Callable[[socket.socket, Tuple[str, int]], object]


class Listener:
    """
    Listening socket plus the accept loop.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       Listener Internals                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    bind()            Create socket, bind, listen                     │
    │                                                                      │
    │    serve(on_accept)  Accept loop (blocks; run it in a thread)       │
    │        │                                                             │
    │        └──► accept()                                                 │
    │                ├── ok      → on_accept(sock, (ip, port))            │
    │                │              └── ConnectionExists → refuse, close  │
    │                ├── timeout → check closed flag                       │
    │                └── error   → closed? return : count failure         │
    │                                                                      │
    │    close()           Set closed flag, shutdown + close the socket    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        listener = Listener(config, console)
        listener.bind()
        threading.Thread(target=listener.serve, args=(register,)).start()
        ...
        listener.close()   # serve() returns
    """

    def __init__(self, config: ChatConfig, sink: OutputSink):
        """
        Args:
            config: Provides host, port, backlog and the error policy.
            sink: Where refused connections and fatal errors are reported.
        """
        self.config = config
        self.sink = sink

        self._socket: Optional[socket.socket] = None
        self._address: Optional[Tuple[str, int]] = None

        # Set before the socket is closed, so accept() errors caused by
        # the close are recognised as a shutdown and not counted
        self._closed = threading.Event()
        self._lock = threading.Lock()

        self.consecutive_errors = 0
        self.fatal_error: Optional[ListenerFatal] = None

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port). Reflects the real port when port 0 was asked for."""
        if self._address is None:
            return (self.config.host, self.config.port)
        return self._address

    def _create_socket(self) -> socket.socket:
        """Create and configure the listening socket."""
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # SO_REUSEADDR: rebind immediately after a restart instead of
        # waiting out TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # accept() wakes up every poll interval to look at the closed flag
        sock.settimeout(self.config.accept_poll_interval)

        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Bind and start listening.

        Returns:
            The bound (host, port).

        Raises:
            OSError: The address is in use or not ours to bind.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            raise

        self._socket.listen(self.config.backlog)

        sockname = self._socket.getsockname()
        self._address = (sockname[0], sockname[1])

        logger.info(f"Listening on {self._address[0]}:{self._address[1]}")
        return self._address

    def serve(self, on_accept: AcceptCallback) -> None:
        """
        Accept peers until the listener is closed.

        Args:
            on_accept: Registers an accepted socket. Raises ConnectionExists
                       to refuse a duplicate peer.
        """
        if self._socket is None:
            raise RuntimeError("Listener.serve() called before bind()")

        while True:
            try:
                client_socket, client_address = self._socket.accept()

            except socket.timeout:
                if self.is_closed:
                    return
                continue

            except OSError as e:
                if self.is_closed:
                    # The listener was closed on purpose: exit or fatal policy
                    logger.debug("Listener closed, accept loop exiting")
                    return

                self._record_failure(e)
                if self.fatal_error is not None:
                    return
                continue

            # A good accept resets the consecutive error count
            self.consecutive_errors = 0

            self._handle_accepted(client_socket, client_address, on_accept)

    def _handle_accepted(
        self,
        client_socket: socket.socket,
        client_address: tuple,
        on_accept: AcceptCallback,
    ) -> None:
        # IPv6 addresses come back as (host, port, flowinfo, scope_id)
        ip, port = client_address[0], client_address[1]
        logger.debug(f"Accepted connection from {ip}:{port}")

        try:
            on_accept(client_socket, (ip, port))

        except ConnectionExists:
            logger.warning(f"Refusing connection from {ip}:{port}: connection already exists")
            self.sink.out_err(
                "\nRefusing connection from %s:%d! Connection already exists!\n\n%s",
                ip, port, PROMPT,
            )
            _close_quietly(client_socket)

        except Exception as e:
            logger.exception(f"Failed to register connection from {ip}:{port}: {e}")
            _close_quietly(client_socket)

    def _record_failure(self, error: OSError) -> None:
        self.consecutive_errors += 1
        failure = AcceptFailure(error, self.consecutive_errors)

        logger.warning(f"{self.address[0]}:{self.address[1]}: {failure}")
        self.sink.out_err("\nAccept error: %s\n\n%s", error, PROMPT)

        if self.consecutive_errors > self.config.max_accept_errors:
            self.fatal_error = ListenerFatal(self.consecutive_errors)
            logger.error(str(self.fatal_error))
            self.sink.out_err("\n%s\n\n%s", self.fatal_error, PROMPT)
            self.close()

    def close(self) -> None:
        """
        Stop accepting. Idempotent.

        shutdown() wakes a thread blocked in accept() on platforms where a
        bare close() would not.
        """
        with self._lock:
            if self._closed.is_set():
                return  # Already closed

            self._closed.set()

            if self._socket is None:
                return

            try:
                self._socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Listening sockets are not connected on every platform

            try:
                self._socket.close()
            except OSError:
                pass

        logger.info("Listener closed")


def _close_quietly(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError:
        pass
