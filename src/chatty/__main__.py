"""
=============================================================================
CHATTY CLI ENTRY POINT
=============================================================================

    # Listen on port 4545 on this machine's outbound IP
    python -m chatty --port 4545

    # Listen on loopback only
    python -m chatty --port 4545 --host 127.0.0.1

    # Verbose logs (on stderr) with JSON connection events
    python -m chatty --port 4545 --log-level DEBUG --log-format json

    # Port and host from the environment
    CHATTY_PORT=4545 CHATTY_HOST=127.0.0.1 python -m chatty

Flags override CHATTY_* variables, which override the defaults.
Installed with pip, the same is available as the `chatty` command.

=============================================================================
"""

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from . import __version__
from .app import ChatApp
from .config import ChatConfig
from .netutil import get_outbound_ip


def setup_logging(log_level: str) -> None:
    """Configure logging based on config."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logging.getLogger("chatty").setLevel(level)


def build_parser() -> argparse.ArgumentParser:
    defaults = ChatConfig()

    parser = argparse.ArgumentParser(
        prog="chatty",
        description="Peer-to-peer TCP chat: listen for peers and dial out to them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  chatty --port 4545                      # Listen on the outbound IP
  chatty --port 4545 --host 127.0.0.1     # Loopback only
  chatty --port 4545 --log-level DEBUG    # Verbose logs on stderr
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on for incoming connections (default: $CHATTY_PORT or 4545)",
    )

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Address to listen on (default: $CHATTY_HOST or this machine's outbound IP)",
    )

    parser.add_argument(
        "--dial-timeout",
        type=float,
        default=None,
        help=f"Seconds to wait when connecting to a peer (default: $CHATTY_DIAL_TIMEOUT or {defaults.dial_timeout:g})",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help=f"Logging level (default: $CHATTY_LOG_LEVEL or {defaults.log_level})",
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Format of connection event logs (default: $CHATTY_LOG_FORMAT or text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"chatty {__version__}",
    )

    return parser


def build_config(args: argparse.Namespace) -> ChatConfig:
    """
    Environment first, then any flag that was given on top.

    Without --host or CHATTY_HOST the listener binds the outbound IP.

    Raises:
        ValueError: A CHATTY_* variable does not parse.
    """
    config = ChatConfig.from_env()

    if args.host is not None:
        config.host = args.host
    elif "CHATTY_HOST" not in os.environ:
        config.host = get_outbound_ip()

    if args.port is not None:
        config.port = args.port
    if args.dial_timeout is not None:
        config.dial_timeout = args.dial_timeout
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format

    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args)
        setup_logging(config.log_level)
        config.validate()
        return ChatApp(config).run()
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
