"""
=============================================================================
CONNECTION EVENT LOGGING
=============================================================================

Structured log entries for the lifecycle of peer connections.

Every connection produces a small, predictable set of events:

    opened ──────────────────────────► closed
      │                                  ▲
      │   (inbound or outbound)          │  handler returned
      │                                  │  (peer closed, terminate, exit,
      │                                  │   read error)
      ▼
    rejected   (duplicate ip:port, never registered)

Each event is rendered either as a single text line:

    conn=3 event=opened direction=inbound peer=192.168.1.20:51234

or as a JSON object for log aggregators:

    {"event": "opened", "conn_id": 3, "direction": "inbound", ...}

=============================================================================
"""

import json
import time
import logging
from dataclasses import dataclass, field
from typing import Optional


# Namespaced so it can be tuned separately from the rest of the package:
#   logging.getLogger("chatty.events").setLevel(logging.DEBUG)
logger = logging.getLogger("chatty.events")


@dataclass
class ConnectionEvent:
    """
    Structured log entry for one connection lifecycle event.

    Attributes:
        event: "opened", "rejected" or "closed".
        conn_id: Connection id, None for rejected connections.
        direction: "inbound" or "outbound".
        remote_ip: Peer IP address.
        remote_port: Peer port.
        duration_s: Connection lifetime, set on "closed".
        bytes_received: Bytes read by the handler, set on "closed".
        bytes_sent: Bytes written by send, set on "closed".
        timestamp: When the event happened.
    """

    event: str
    conn_id: Optional[int]
    direction: str
    remote_ip: str
    remote_port: int
    duration_s: Optional[float] = None
    bytes_received: Optional[int] = None
    bytes_sent: Optional[int] = None
    timestamp: str = field(default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%S%z"))

    def to_dict(self) -> dict:
        """Convert to a dictionary, dropping fields that were never set."""
        data = {
            "event": self.event,
            "conn_id": self.conn_id,
            "direction": self.direction,
            "remote_ip": self.remote_ip,
            "remote_port": self.remote_port,
            "timestamp": self.timestamp,
        }
        if self.duration_s is not None:
            data["duration_s"] = round(self.duration_s, 3)
        if self.bytes_received is not None:
            data["bytes_received"] = self.bytes_received
        if self.bytes_sent is not None:
            data["bytes_sent"] = self.bytes_sent
        return data

    def to_text(self) -> str:
        """Format as a key=value line."""
        conn = "-" if self.conn_id is None else str(self.conn_id)
        text = (
            f"conn={conn} event={self.event} direction={self.direction} "
            f"peer={self.remote_ip}:{self.remote_port}"
        )
        if self.duration_s is not None:
            text += f" duration={self.duration_s:.3f}s"
        if self.bytes_received is not None:
            text += f" rx={self.bytes_received}"
        if self.bytes_sent is not None:
            text += f" tx={self.bytes_sent}"
        return text


class EventLogger:
    """
    Emits ConnectionEvents on the "chatty.events" logger.

    Usage:
        events = EventLogger(log_format="json")
        events.emit(ConnectionEvent("opened", 1, "inbound", "10.0.0.2", 5000))
    """

    def __init__(self, log_format: str = "text", log_level: int = logging.INFO):
        self.log_format = log_format
        self.log_level = log_level

    def emit(self, event: ConnectionEvent) -> None:
        if not logger.isEnabledFor(self.log_level):
            return

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(event.to_dict()))
        else:
            logger.log(self.log_level, event.to_text())
