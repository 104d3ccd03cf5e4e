"""
Console output sink.

Everything the user is meant to read (prompts, incoming messages, the
connection table, errors from commands) goes through an OutputSink. Logs are
a separate channel handled by the logging module.
"""

import sys
import threading
from typing import Optional, Protocol, TextIO


PROMPT = "Please enter a command: "


class OutputSink(Protocol):
    """What the connection manager needs from the user interface."""

    def out(self, fmt: str, *args) -> None: ...

    def out_err(self, fmt: str, *args) -> None: ...


class Console:
    """
    Writes user-facing messages to stdout / stderr.

    Handler threads print incoming messages while the main thread sits in
    input(), so writes are serialized with a lock to keep lines from
    interleaving mid-message.

    Usage:
        console = Console()
        console.out("Your port is: %d\\n", 4545)
        console.out_err("ERROR %s\\n", err)
    """

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None):
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self._lock = threading.Lock()

    def out(self, fmt: str, *args) -> None:
        """Print to standard output."""
        self._write(self.stdout, fmt, args)

    def out_err(self, fmt: str, *args) -> None:
        """Print to standard error."""
        self._write(self.stderr, fmt, args)

    def prompt(self) -> None:
        """Print the command prompt."""
        self.out("\n" + PROMPT)

    def _write(self, stream: TextIO, fmt: str, args: tuple) -> None:
        # Only interpolate when given args, so a bare '%' in a message is safe
        text = fmt % args if args else fmt
        with self._lock:
            stream.write(text)
            stream.flush()
