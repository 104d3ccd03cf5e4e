"""
=============================================================================
COMMAND DISPATCHER
=============================================================================

Turns a line typed by the user into a call on the ConnectionManager.

    "send 2 hello there"
         │
         ▼  split on " " into at most 3 parts
    ["send", "2", "hello there"]
         │
         ▼  look up "send" (or its number, "7")
    Command(number="7", name="send", handler=_send)
         │
         ▼
    manager.send("2", "hello there")

Every command can be typed by name or by number:

    1. help [command ...]
    2. myip
    3. myport
    4. connect <destination> <port no>
    5. list
    6. terminate <connection id>
    7. send <connection id> <message>
    8. exit

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .console import OutputSink
from .errors import CommandError
from .manager import ConnectionManager


logger = logging.getLogger(__name__)


STARTUP_TEXT = """
CHATTY: A Chat Application for Remote Message Exchange
------------------------------------------------------
Available commands:
    1. help
    2. myip
    3. myport
    4. connect <destination> <port no>
    5. list
    6. terminate <connection id>
    7. send <connection id> <message>
    8. exit

You may either type the command name, i.e. 'connect <destination> <port no>', or the command number, i.e. '4 <destination> <port no>'
Type 'help' for an explanation of each command, or type 'help <command>' to get the explanation for a specific command
"""

LIST_EXAMPLE = """   For example:
    id |  IP Address   | Port
    ---+---------------+-----
     1 | 192.168.21.20 | 4545
     2 | 192.168.21.21 | 5454
"""


Handler = Callable[[List[str]], None]


@dataclass
class Command:
    """
    A command the user can type.

        Command(
            number="6",
            name="terminate",
            usage="terminate <connection id>",
            description="Terminates the connection associated with ...",
            handler=<bound method>,
        )
    """

    number: str
    name: str
    usage: str
    description: str
    handler: Handler

    def help_line(self) -> str:
        return f"{self.number}. {self.usage} - {self.description}"


class CommandDispatcher:
    """
    Parses user input and runs the matching command.

    Usage:
        dispatcher = CommandDispatcher(manager, console)
        dispatcher.handle("connect 192.168.1.20 4545")

    Errors raised by the manager (ChatError subclasses) and CommandError
    for malformed input propagate to the caller, which prints them.
    """

    def __init__(self, manager: ConnectionManager, sink: OutputSink):
        self.manager = manager
        self.sink = sink

        self._commands: List[Command] = []
        self._lookup: Dict[str, Command] = {}

        self._add("1", "help", "help", "Displays available application commands", self._help)
        self._add("2", "myip", "myip", "Displays the IP address of this process", self._myip)
        self._add(
            "3", "myport", "myport",
            "Displays the port on which this process is listening for incoming connections",
            self._myport,
        )
        self._add(
            "4", "connect", "connect <destination> <port no>",
            "Establishes a new TCP connection to the specified <destination> at the specified <port no>",
            self._connect,
        )
        self._add(
            "5", "list", "list",
            "Displays a numbered list of all the connections this process is a part of",
            self._list,
        )
        self._add(
            "6", "terminate", "terminate <connection id>",
            "Terminates the connection associated with the given connection id",
            self._terminate,
        )
        self._add(
            "7", "send", "send <connection id> <message>",
            "Sends a message to the host on the connection that is designated by the connection id",
            self._send,
        )
        self._add("8", "exit", "exit", "Closes all connections and terminates the process", self._exit)

    def _add(self, number: str, name: str, usage: str, description: str, handler: Handler) -> None:
        command = Command(number, name, usage, description, handler)
        self._commands.append(command)
        self._lookup[number] = command
        self._lookup[name] = command

    @property
    def commands(self) -> List[Command]:
        return list(self._commands)

    def resolve(self, word: str) -> Optional[Command]:
        """Find a command by name or number."""
        return self._lookup.get(word)

    def handle(self, line: str) -> None:
        """
        Run one line of user input.

        Raises:
            CommandError: Unknown command or wrong arguments.
            ChatError: Whatever the manager raised for the command.
        """
        line = line.strip()
        if not line:
            return

        args = line.split(" ", 2)
        command = self.resolve(args[0])
        if command is None:
            raise CommandError(
                "invalid input error: You must give one of the accepted app commands\n"
                "Type 'help' to get a list of available commands"
            )

        logger.debug(f"Running command {command.name} with {len(args) - 1} argument(s)")
        command.handler(args)

    def print_startup_text(self) -> None:
        self.sink.out("%s", STARTUP_TEXT)

    # =========================================================================
    # COMMAND HANDLERS
    # =========================================================================

    def _help(self, args: List[str]) -> None:
        self.sink.out("\nApplication Commands\n")
        self.sink.out("--------------------\n")

        topics = " ".join(args[1:]).split()
        if not topics:
            for command in self._commands:
                self.sink.out("%s\n", command.help_line())
                if command.name == "list":
                    self.sink.out("%s", LIST_EXAMPLE)
            return

        for topic in topics:
            command = self.resolve(topic)
            if command is None:
                continue
            self.sink.out("%s\n", command.help_line())
            if command.name == "list":
                self.sink.out("%s", LIST_EXAMPLE)

    def _myip(self, args: List[str]) -> None:
        self.sink.out("Your IP address is: %s\n", self.manager.host)

    def _myport(self, args: List[str]) -> None:
        self.sink.out("Your port is: %d\n", self.manager.port)

    def _connect(self, args: List[str]) -> None:
        if len(args) < 3:
            raise CommandError(
                "connect input error: You must give both the destination "
                "and the port when using the connect command"
            )
        self.manager.connect(args[1], args[2])

    def _list(self, args: List[str]) -> None:
        self.manager.list_connections()

    def _terminate(self, args: List[str]) -> None:
        if len(args) != 2:
            raise CommandError(
                "terminate input error: You must give the connection id you wish to terminate\n"
                "Type `list` to get a list of connections and their ids"
            )
        self.manager.terminate(args[1])

    def _send(self, args: List[str]) -> None:
        if len(args) != 3:
            raise CommandError(
                "send input error: You must give both the connection id "
                "and a message to the connection"
            )
        self.manager.send(args[1], args[2])

    def _exit(self, args: List[str]) -> None:
        self.manager.exit()
