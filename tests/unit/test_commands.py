"""
Unit tests for the command dispatcher.
"""

import pytest

from chatty.commands import CommandDispatcher
from chatty.errors import CommandError


class RecordingManager:
    """Records the calls the dispatcher makes."""

    host = "192.168.21.20"
    port = 4545

    def __init__(self):
        self.calls = []

    def connect(self, destination, port):
        self.calls.append(("connect", destination, port))

    def list_connections(self):
        self.calls.append(("list",))
        return []

    def terminate(self, conn_id):
        self.calls.append(("terminate", conn_id))

    def send(self, conn_id, message):
        self.calls.append(("send", conn_id, message))

    def exit(self):
        self.calls.append(("exit",))


@pytest.fixture
def manager() -> RecordingManager:
    return RecordingManager()


@pytest.fixture
def dispatcher(manager, console) -> CommandDispatcher:
    return CommandDispatcher(manager, console)


class TestResolution:
    """Tests for finding commands by name or number."""

    @pytest.mark.parametrize("word,name", [
        ("1", "help"), ("help", "help"),
        ("4", "connect"), ("connect", "connect"),
        ("8", "exit"), ("exit", "exit"),
    ])
    def test_name_and_number(self, dispatcher, word, name):
        """Test that both forms resolve to the same command."""
        assert dispatcher.resolve(word).name == name

    def test_unknown(self, dispatcher):
        """Test that unknown input raises CommandError."""
        with pytest.raises(CommandError, match="invalid input"):
            dispatcher.handle("dance")

    def test_blank_line_is_ignored(self, dispatcher, manager):
        """Test that an empty line does nothing."""
        dispatcher.handle("   ")
        assert manager.calls == []

    def test_eight_commands(self, dispatcher):
        """Test the full command table."""
        assert [c.number for c in dispatcher.commands] == [str(n) for n in range(1, 9)]


class TestDispatch:
    """Tests for argument handling."""

    def test_connect(self, dispatcher, manager):
        """Test connect passes destination and port through."""
        dispatcher.handle("connect 192.168.21.21 5454")
        dispatcher.handle("4 10.0.0.1 80")

        assert manager.calls == [
            ("connect", "192.168.21.21", "5454"),
            ("connect", "10.0.0.1", "80"),
        ]

    def test_connect_missing_port(self, dispatcher, manager):
        """Test connect without a port."""
        with pytest.raises(CommandError, match="destination and the port"):
            dispatcher.handle("connect 10.0.0.1")
        assert manager.calls == []

    def test_send_keeps_spaces(self, dispatcher, manager):
        """Test that the message is everything after the id."""
        dispatcher.handle("send 2 hello there,  friend")

        assert manager.calls == [("send", "2", "hello there,  friend")]

    def test_send_without_message(self, dispatcher):
        """Test send with only an id."""
        with pytest.raises(CommandError, match="send input error"):
            dispatcher.handle("send 2")

    def test_terminate(self, dispatcher, manager):
        """Test terminate with exactly one id."""
        dispatcher.handle("6 3")
        assert manager.calls == [("terminate", "3")]

        with pytest.raises(CommandError, match="terminate input error"):
            dispatcher.handle("terminate")
        with pytest.raises(CommandError, match="terminate input error"):
            dispatcher.handle("terminate 1 2")

    def test_list_and_exit(self, dispatcher, manager):
        """Test commands without arguments."""
        dispatcher.handle("list")
        dispatcher.handle("8")

        assert manager.calls == [("list",), ("exit",)]

    def test_myip_myport(self, dispatcher, console):
        """Test the informational commands."""
        dispatcher.handle("myip")
        dispatcher.handle("3")

        assert "Your IP address is: 192.168.21.20" in console.output
        assert "Your port is: 4545" in console.output


class TestHelp:
    """Tests for help output."""

    def test_full_help(self, dispatcher, console):
        """Test help without arguments lists everything."""
        dispatcher.handle("help")

        assert "Application Commands" in console.output
        assert "4. connect <destination> <port no>" in console.output
        assert "8. exit - Closes all connections" in console.output
        assert "192.168.21.20 | 4545" in console.output

    def test_topic_help(self, dispatcher, console):
        """Test help for chosen commands, by name and number."""
        dispatcher.handle("help send 6")

        assert "7. send <connection id> <message>" in console.output
        assert "6. terminate <connection id>" in console.output
        assert "4. connect" not in console.output

    def test_startup_text(self, dispatcher, console):
        """Test the banner shown at startup."""
        dispatcher.print_startup_text()
        assert "CHATTY: A Chat Application for Remote Message Exchange" in console.output
