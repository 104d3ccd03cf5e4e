"""
Integration tests for the connection manager over real loopback sockets.
"""

import io
import socket
import threading

import pytest

from chatty import ChatConfig, ConnectionManager
from chatty.console import Console
from chatty.core import Connection, ConnectionDirection
from chatty.errors import (
    ConnectionExists,
    DialTimeout,
    InvalidAddress,
    InvalidConnectionID,
    MessageTooLong,
    SelfConnection,
)


def connect_raw(manager: ConnectionManager, clients: list) -> socket.socket:
    """Open a plain TCP client to the manager's listener."""
    client = socket.create_connection(("127.0.0.1", manager.port), timeout=2.0)
    clients.append(client)
    return client


class TestConnectValidation:
    """Tests for connect() checks that happen before any dial."""

    @pytest.fixture
    def no_dial(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("dial attempted")
        monkeypatch.setattr(socket, "create_connection", fail)

    def test_invalid_ip(self, manager, no_dial):
        """Test that a hostname is not an IP address."""
        with pytest.raises(InvalidAddress):
            manager.connect("not-an-ip", 5000)

    def test_invalid_port(self, manager, no_dial):
        """Test non-numeric and out of range ports."""
        with pytest.raises(InvalidAddress):
            manager.connect("127.0.0.1", "abc")
        with pytest.raises(InvalidAddress):
            manager.connect("127.0.0.1", 70000)

    def test_existing_peer_in_other_spelling(self, manager, no_dial, sock_pair):
        """Test that an equivalent address counts as the same peer."""
        local, _ = sock_pair
        manager.registry.insert_if_absent(
            "::1", 5000,
            lambda conn_id: Connection(id=conn_id, socket=local, remote_ip="::1", remote_port=5000),
        )

        with pytest.raises(ConnectionExists) as exc_info:
            manager.connect("0:0:0:0:0:0:0:1", 5000)

        assert exc_info.value.ip == "::1"
        assert len(manager.registry) == 1

    def test_self_connection(self, manager, no_dial):
        """Test dialing our own listening port."""
        with pytest.raises(SelfConnection) as exc_info:
            manager.connect("127.0.0.1", manager.port)

        assert exc_info.value.port == manager.port
        assert len(manager.registry) == 0

    def test_dial_failure(self, manager, free_port):
        """Test dialing a port nobody listens on."""
        with pytest.raises(DialTimeout):
            manager.connect("127.0.0.1", free_port)

        assert len(manager.registry) == 0


class TestOutbound:
    """Tests for connections between two managers."""

    def test_connect_registers_both_sides(self, manager, peer, console, wait_until):
        """Test that a connect shows up in both lists."""
        conn = manager.connect("127.0.0.1", str(peer.port))

        assert conn.id == 1
        assert conn.direction is ConnectionDirection.OUTBOUND
        assert "New connection established: 1 | 127.0.0.1:%d" % peer.port in console.output

        assert wait_until(lambda: len(peer.registry) == 1)
        inbound = peer.registry.ordered()[0]
        assert inbound.direction is ConnectionDirection.INBOUND
        assert inbound.remote_port == conn.socket.getsockname()[1]

        rows = manager.list_connections()
        assert [(c.id, c.remote_ip, c.remote_port) for c in rows] == [(1, "127.0.0.1", peer.port)]
        assert " 1 | 127.0.0.1     | %d\n" % peer.port in console.output

    def test_duplicate_connect(self, manager, peer):
        """Test connecting to the same peer twice."""
        manager.connect("127.0.0.1", peer.port)

        with pytest.raises(ConnectionExists):
            manager.connect("127.0.0.1", peer.port)

        assert len(manager.registry) == 1

    def test_duplicate_in_other_spelling_does_not_dial(self, manager, wait_until):
        """Test that a second spelling of a connected IPv6 peer is refused without a dial."""
        ipv6_peer = ConnectionManager(
            ChatConfig(host="::1", port=0, dial_timeout=2.0, accept_poll_interval=0.1),
            Console(stdout=io.StringIO(), stderr=io.StringIO()),
        )
        try:
            ipv6_peer.start()
        except OSError:
            pytest.skip("IPv6 loopback not available")

        try:
            manager.connect("::1", ipv6_peer.port)
            assert wait_until(lambda: len(ipv6_peer.registry) == 1)

            with pytest.raises(ConnectionExists):
                manager.connect("0:0:0:0:0:0:0:1", ipv6_peer.port)

            assert [c.id for c in ipv6_peer.registry.ordered()] == [1]
            assert ipv6_peer.registry.next_id() == 2
        finally:
            ipv6_peer.exit()

    def test_send_delivers_message(self, manager, peer, peer_console, console, wait_until):
        """Test that a message arrives and is printed on the other side."""
        conn = manager.connect("127.0.0.1", peer.port)

        manager.send(conn.id, "hello peer")

        assert "Message sent to connection 1!" in console.output
        assert wait_until(lambda: 'Message: "hello peer"' in peer_console.output)
        assert conn.bytes_sent == len(b"hello peer")

    def test_message_length_limit(self, manager, peer, wait_until, peer_console):
        """Test that 100 bytes pass and 101 are refused."""
        conn = manager.connect("127.0.0.1", peer.port)

        manager.send(conn.id, "a" * 100)
        assert wait_until(lambda: "a" * 100 in peer_console.output)

        with pytest.raises(MessageTooLong) as exc_info:
            manager.send(conn.id, "b" * 101)

        assert exc_info.value.length == 101
        assert exc_info.value.limit == 100
        assert "max length is 100 bytes but your message is 101 bytes" in str(exc_info.value)

    def test_limit_counts_encoded_bytes(self, manager, peer):
        """Test that multi-byte characters count by their UTF-8 length."""
        conn = manager.connect("127.0.0.1", peer.port)

        with pytest.raises(MessageTooLong) as exc_info:
            manager.send(conn.id, "é" * 51)

        assert exc_info.value.length == 102
        assert "your message is 102 bytes" in str(exc_info.value)

    def test_send_unknown_id(self, manager):
        """Test sending on an id that was never issued."""
        with pytest.raises(InvalidConnectionID):
            manager.send(7, "hi")
        with pytest.raises(InvalidConnectionID):
            manager.send("seven", "hi")

    def test_terminate(self, manager, peer, peer_console, wait_until):
        """Test that terminate ends the connection on both sides."""
        conn = manager.connect("127.0.0.1", peer.port)
        assert wait_until(lambda: len(peer.registry) == 1)

        manager.terminate(conn.id)

        assert wait_until(lambda: len(manager.registry) == 0)
        assert wait_until(lambda: len(peer.registry) == 0)
        assert "closed by the peer" in peer_console.output

        with pytest.raises(InvalidConnectionID):
            manager.terminate(conn.id)

    def test_ids_strictly_increase(self, manager, peer, wait_until):
        """Test that ids are never reused after a terminate."""
        first = manager.connect("127.0.0.1", peer.port)
        manager.terminate(first.id)
        assert wait_until(lambda: len(manager.registry) == 0)

        second = manager.connect("127.0.0.1", peer.port)

        assert second.id > first.id


class TestInbound:
    """Tests for connections accepted by the listener."""

    def test_inbound_scenario(self, manager, console, clients, sock_pair, wait_until):
        """Test accept, duplicate refusal, terminate and a stale id."""
        client = connect_raw(manager, clients)
        src_port = client.getsockname()[1]

        assert wait_until(lambda: len(manager.registry) == 1)
        assert "New incoming connection: 1 | 127.0.0.1:%d" % src_port in console.output

        # A second socket claiming the same source address
        duplicate, _ = sock_pair
        manager.listener._handle_accepted(duplicate, ("127.0.0.1", src_port), manager._accept)

        assert duplicate.fileno() == -1
        assert "Connection already exists" in console.errors
        assert [c.id for c in manager.list_connections()] == [1]

        manager.terminate(1)
        assert wait_until(lambda: len(manager.registry) == 0)

        with pytest.raises(InvalidConnectionID):
            manager.send(1, "hi")

    def test_peer_close_removes_connection(self, manager, console, clients, wait_until):
        """Test that a peer hanging up is noticed and cleaned up."""
        client = connect_raw(manager, clients)
        assert wait_until(lambda: len(manager.registry) == 1)

        client.close()

        assert wait_until(lambda: len(manager.registry) == 0)
        assert "Connection 1 (127.0.0.1:" in console.output

    def test_message_from_raw_client(self, manager, console, clients, wait_until):
        """Test that bytes from any TCP client are printed."""
        client = connect_raw(manager, clients)
        client.sendall(b"plain tcp")

        assert wait_until(lambda: 'Message: "plain tcp"' in console.output)

    def test_outbound_works_after_listener_fatal(self, manager, peer, wait_until):
        """Test that a dead listener does not stop dialing out."""
        for _ in range(manager.config.max_accept_errors + 1):
            manager.listener._record_failure(OSError("accept failed"))

        assert manager.listener.fatal_error is not None
        assert manager.listener.is_closed

        conn = manager.connect("127.0.0.1", peer.port)
        assert conn.id == 1
        assert wait_until(lambda: len(peer.registry) == 1)


class TestRegistrationRace:
    """Tests for concurrent registration of one address."""

    def test_concurrent_register_single_winner(self, manager):
        """Test that racing inbound and outbound registrations keep one."""
        pairs = [socket.socketpair() for _ in range(8)]
        barrier = threading.Barrier(len(pairs))
        outcomes = []
        lock = threading.Lock()

        def worker(i, sock):
            direction = ConnectionDirection.INBOUND if i % 2 else ConnectionDirection.OUTBOUND
            barrier.wait()
            try:
                manager._register(sock, ("10.1.1.1", 9000), direction)
                result = "won"
            except ConnectionExists:
                result = "lost"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(i, a)) for i, (a, _) in enumerate(pairs)]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert outcomes.count("won") == 1
            assert [c.remote_port for c in manager.registry.ordered()] == [9000]
        finally:
            for a, b in pairs:
                b.close()
                a.close()


class TestExit:
    """Tests for shutdown."""

    def test_exit_closes_everything(self, manager, peer, console, clients, wait_until):
        """Test that exit closes connections and stops listening."""
        manager.connect("127.0.0.1", peer.port)
        connect_raw(manager, clients)
        assert wait_until(lambda: len(manager.registry) == 2)
        port = manager.port

        manager.exit()

        assert manager.wait_for_shutdown(timeout=1.0)
        assert manager.is_shutdown
        assert "Closing any established connections .." in console.output
        assert "Exiting program now .. bye!" in console.output

        assert wait_until(lambda: len(manager.registry) == 0)
        assert wait_until(lambda: len(peer.registry) == 0)

        with pytest.raises(OSError):
            socket.create_connection(("127.0.0.1", port), timeout=1.0).close()

    def test_exit_continues_past_close_failure(self, manager, console, clients, wait_until):
        """Test that one failing close does not stop the others."""
        connect_raw(manager, clients)
        connect_raw(manager, clients)
        assert wait_until(lambda: len(manager.registry) == 2)

        first, second = manager.registry.ordered()
        real_close = first.close
        failed = []

        def close_failing_once():
            first_call = not failed
            failed.append(True)
            real_close()
            if first_call:
                raise RuntimeError("close failed")

        first.close = close_failing_once

        manager.exit()

        assert "Error closing connection 1: close failed" in console.errors
        assert not second.is_open
        assert manager.listener.is_closed
        assert manager.is_shutdown

    def test_exit_twice(self, manager, console):
        """Test that a second exit is harmless and silent."""
        manager.exit()
        manager.exit()

        assert console.output.count("Exiting program now") == 1

    def test_wait_times_out_while_running(self, manager):
        """Test wait_for_shutdown before exit."""
        assert manager.wait_for_shutdown(timeout=0.05) is False
