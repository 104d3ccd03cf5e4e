"""
Exceptions raised by the connection manager and the command dispatcher.

Every user-triggered failure is a ChatError subclass so the REPL can catch
one type, print the message and keep going. AcceptFailure and ListenerFatal
are never raised to a caller; the accept loop logs them and reports them on
the error sink.
"""

from typing import Optional


class ChatError(Exception):
    """Base class for all chat errors."""


class ConnectionExists(ChatError):
    """A connection to this ip:port is already registered."""

    def __init__(self, ip: str, port: int):
        super().__init__(f"connection to {ip}:{port} already exists")
        self.ip = ip
        self.port = port


class SelfConnection(ChatError):
    """Outbound connect aimed at our own listening port."""

    def __init__(self, port: int):
        super().__init__(f"self connections not allowed (port {port} is our listening port)")
        self.port = port


class InvalidAddress(ChatError):
    """The destination is not an IP address, or the port is not a port."""

    def __init__(self, destination: str, port: object):
        super().__init__(f"invalid address given: {destination}:{port}")
        self.destination = destination
        self.port = port


class DialTimeout(ChatError):
    """The outbound dial failed or timed out."""

    def __init__(self, destination: str, port: int, reason: Optional[BaseException] = None):
        message = f"unable to connect to {destination}:{port}, dial request failed or timed out"
        if reason is not None:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.destination = destination
        self.port = port
        self.reason = reason


class InvalidConnectionID(ChatError):
    """No registered connection has this id."""

    def __init__(self, conn_id: object):
        super().__init__(
            f"{conn_id} is not a valid connection id, "
            "use list to see all current connections"
        )
        self.conn_id = conn_id


class MessageTooLong(ChatError):
    """
    The message exceeds the send limit.

    Attributes:
        length: Encoded length of the rejected message in bytes.
        limit: The configured maximum.
    """

    def __init__(self, length: int, limit: int):
        super().__init__(
            f"message is too long, max length is {limit} bytes "
            f"but your message is {length} bytes"
        )
        self.length = length
        self.limit = limit


class AcceptFailure(ChatError):
    """An accept() call failed for a reason other than the listener closing."""

    def __init__(self, error: OSError, count: int):
        super().__init__(f"accept failed ({count} in a row): {error}")
        self.error = error
        self.count = count


class ListenerFatal(ChatError):
    """Too many consecutive accept failures; the listener has been closed."""

    def __init__(self, count: int):
        super().__init__(
            f"too many accept errors ({count} in a row), "
            "unable to accept any new connections"
        )
        self.count = count


class CommandError(ChatError):
    """The user typed something the command dispatcher cannot run."""
