"""
=============================================================================
CHAT CONFIGURATION
=============================================================================

Centralized configuration for the chat process: where we listen, how long
we wait when dialing a peer, how big a message may be, and how noisy the
logs are.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── chatty --port 4545                                         │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CHATTY_PORT=4545 chatty                                    │
    │                                                                      │
    │   3. Defaults defined in ChatConfig                                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class ChatConfig:
    """
    Configuration for a chat peer.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, dial_timeout

    POLICY SETTINGS
    - max_message_length, max_accept_errors, accept_poll_interval

    LOGGING
    - log_level, log_format

    =========================================================================
    EXAMPLES
    =========================================================================

    Interactive use:
        ChatConfig(host="192.168.1.20", port=4545)

    Tests:
        ChatConfig(
            host="127.0.0.1",
            port=0,                    # OS picks a free port
            accept_poll_interval=0.1,  # Notice shutdown quickly
        )

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address the listener binds to.
    The CLI defaults this to the machine's outbound IP.
    """

    port: int = 4545
    """
    The port to listen on for incoming connections.
    0 asks the OS for a free port; the real one is available from
    ConnectionManager.port once started.
    """

    backlog: int = 16
    """
    Maximum number of queued, not yet accepted connections.
    """

    buffer_size: int = 4096
    """
    How many bytes a connection handler reads per recv() call.
    """

    dial_timeout: float = 10.0
    """
    Seconds to wait for an outbound connect before giving up.
    """

    # ─────────────────────────────────────────────────────────────────────
    # POLICY SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_message_length: int = 100
    """
    Largest message (in encoded bytes) that send accepts.
    """

    max_accept_errors: int = 5
    """
    Consecutive accept() failures tolerated. One more and the listener
    is closed for good.
    """

    accept_poll_interval: Optional[float] = 1.0
    """
    Timeout on the listening socket. accept() wakes up this often to check
    whether the listener was closed. None = block until a connection arrives.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "WARNING"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    Logs go to stderr, separate from the interactive console output.
    """

    log_format: str = "text"
    """
    Format of connection event logs: 'text' or 'json'.
    """

    @classmethod
    def from_env(cls) -> "ChatConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CHATTY_HOST          Listen address (default: 127.0.0.1)
        CHATTY_PORT          Listen port (default: 4545)
        CHATTY_DIAL_TIMEOUT  Outbound dial timeout in seconds (default: 10)
        CHATTY_LOG_LEVEL     Logging level (default: WARNING)
        CHATTY_LOG_FORMAT    Event log format, text or json (default: text)

        =====================================================================
        """
        return cls(
            host=os.getenv("CHATTY_HOST", "127.0.0.1"),
            port=int(os.getenv("CHATTY_PORT", "4545")),
            dial_timeout=float(os.getenv("CHATTY_DIAL_TIMEOUT", "10")),
            log_level=os.getenv("CHATTY_LOG_LEVEL", "WARNING"),
            log_format=os.getenv("CHATTY_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by ConnectionManager at construction so a bad value fails
        at startup rather than on the first connection.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.dial_timeout <= 0:
            raise ValueError("dial_timeout must be > 0")

        if self.max_message_length < 1:
            raise ValueError("max_message_length must be >= 1")

        if self.max_accept_errors < 0:
            raise ValueError("max_accept_errors must be >= 0")

        if self.accept_poll_interval is not None and self.accept_poll_interval <= 0:
            raise ValueError("accept_poll_interval must be > 0")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {self.log_format}. Use 'text' or 'json'.")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Type-safe configuration with a dataclass
# 2. Environment variable support (CHATTY_*)
# 3. Validation at startup
# =============================================================================
