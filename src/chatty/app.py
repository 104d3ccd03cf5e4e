"""
=============================================================================
INTERACTIVE APPLICATION
=============================================================================

The read-eval-print loop that drives a ConnectionManager from the
terminal.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ChatApp.run()                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   manager.start()          bind + accept thread                      │
    │   print startup text                                                 │
    │                                                                      │
    │   while not manager.is_shutdown:                                     │
    │       prompt                                                         │
    │       line = readline()    EOF → exit                                │
    │       dispatcher.handle(line)                                        │
    │           └── ChatError → "ERROR ..." on stderr, keep going          │
    │                                                                      │
    │   Ctrl+C / SIGTERM → manager.exit()                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SIGNALS
=============================================================================

SIGINT (Ctrl+C) arrives as KeyboardInterrupt. SIGTERM is mapped onto the
same path, so both close every connection and the listener before the
process exits. The original handlers are restored when run() returns.

=============================================================================
"""

import signal
import sys
import logging
import threading
from typing import Optional, TextIO

from .commands import CommandDispatcher
from .config import ChatConfig
from .console import Console
from .errors import ChatError
from .manager import ConnectionManager


logger = logging.getLogger(__name__)


class ChatApp:
    """
    Terminal front end: a manager, a console and a command dispatcher.

    Usage:
        app = ChatApp(ChatConfig(host="192.168.1.20", port=4545))
        app.run()   # Blocks until the user types exit
    """

    def __init__(
        self,
        config: ChatConfig,
        console: Optional[Console] = None,
        stdin: Optional[TextIO] = None,
    ):
        self.config = config
        self.console = console or Console()
        self.stdin = stdin or sys.stdin

        self.manager = ConnectionManager(config, self.console)
        self.dispatcher = CommandDispatcher(self.manager, self.console)

        self._original_handlers: dict = {}

    def run(self) -> int:
        """
        Start the manager and process commands until exit.

        Returns:
            Process exit status.
        """
        self.manager.start()
        self.dispatcher.print_startup_text()

        self._setup_signals()
        try:
            self._loop()
        except KeyboardInterrupt:
            logger.info("Received interrupt, shutting down")
            self.console.out("\n")
            self.manager.exit()
        finally:
            self._restore_signals()

        return 0

    def _loop(self) -> None:
        while not self.manager.is_shutdown:
            self.console.prompt()

            line = self.stdin.readline()
            if not line:
                # stdin closed, nothing more will come
                self.manager.exit()
                break

            try:
                self.dispatcher.handle(line.rstrip("\r\n"))
            except ChatError as e:
                self.console.out_err("ERROR %s\n", e)

    def _setup_signals(self) -> None:
        """Route SIGTERM into the KeyboardInterrupt shutdown path."""
        # signal.signal() only works in the main thread
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            raise KeyboardInterrupt

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)

    def _restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()
