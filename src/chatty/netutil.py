"""Network helpers."""

import socket
import logging


logger = logging.getLogger(__name__)


def get_outbound_ip(probe_host: str = "8.8.8.8", probe_port: int = 80) -> str:
    """
    Get the IP address of the interface used for outbound traffic.

    "Connecting" a UDP socket sends no packets; it only makes the OS pick a
    route, and with it a local address we can read back.

    Returns:
        The local IP address, or 127.0.0.1 if there is no usable route.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect((probe_host, probe_port))
        return sock.getsockname()[0]
    except OSError as e:
        logger.warning(f"Could not determine outbound IP, using 127.0.0.1: {e}")
        return "127.0.0.1"
    finally:
        sock.close()
