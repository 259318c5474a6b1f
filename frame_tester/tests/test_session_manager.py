from collections.abc import Callable
from pathlib import Path
import errno
import socket
import struct
import tempfile
import time
import unittest

from frame_tester.application.session_manager import SessionManager
from frame_tester.domain import (
    BindFailureError,
    ConnectFailureError,
    ConnectionConfig,
    ConnectionRole,
    Direction,
    MalformedFrameError,
    NoActiveSessionError,
    NoConfigurationError,
    SessionBusyError,
    SessionStatus,
)
from frame_tester.infrastructure import DisplayLogWriter, ProfileStore, TcpWorker, open_listener


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    chunks = b""
    while len(chunks) < size:
        chunk = sock.recv(size - len(chunks))
        if not chunk:
            break
        chunks += chunk
    return chunks


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as scratch:
        scratch.bind(("127.0.0.1", 0))
        return scratch.getsockname()[1]


class SessionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.log_path = Path(self._tmp.name) / "display_log.jsonl"
        self.manager = SessionManager(
            display_log=DisplayLogWriter(self.log_path),
            profile_store=ProfileStore(Path(self._tmp.name) / "profiles.json"),
        )
        self._sockets: list[socket.socket] = []

    def tearDown(self) -> None:
        self.manager.stop()
        for sock in self._sockets:
            sock.close()
        self._tmp.cleanup()

    def start_listener(self) -> tuple[str, int]:
        config = ConnectionConfig(role=ConnectionRole.LISTENER, local_address="127.0.0.1", local_port=0)
        self.assertEqual(self.manager.configure(config), ())
        self.manager.start()
        address = self.manager.listening_address
        assert address is not None
        return address

    def open_client(self, address: tuple[str, int]) -> socket.socket:
        client = socket.create_connection(address, timeout=3.0)
        self._sockets.append(client)
        return client

    def records(self, direction: Direction) -> list:
        return [record for record in self.manager.records() if record.direction == direction]


class TestListenerSession(SessionTestCase):
    def test_listener_status_follows_peers(self) -> None:
        address = self.start_listener()
        self.assertEqual(self.manager.status, SessionStatus.LISTENING)

        client = self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))

        client.close()
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.LISTENING))
        self.assertEqual(self.manager.peers, [])

    def test_status_stays_connected_until_last_peer_leaves(self) -> None:
        address = self.start_listener()
        first = self.open_client(address)
        self.open_client(address)
        self.assertTrue(wait_until(lambda: len(self.manager.peers) == 2))

        first.close()
        self.assertTrue(wait_until(lambda: len(self.manager.peers) == 1))
        self.assertEqual(self.manager.status, SessionStatus.CONNECTED)

    def test_broadcast_to_three_peers(self) -> None:
        address = self.start_listener()
        clients = [self.open_client(address) for _ in range(3)]
        self.assertTrue(
            wait_until(
                lambda: len(self.manager.peers) == 3 and self.manager.status == SessionStatus.CONNECTED
            )
        )

        delivered = self.manager.send("AA")

        self.assertEqual(delivered, 3)
        for client in clients:
            self.assertEqual(recv_exactly(client, 1), b"\xaa")
        sent = self.records(Direction.SENT)
        self.assertEqual(len(sent), 3)
        self.assertEqual({record.hex for record in sent}, {"aa"})
        self.assertEqual(len({record.peer for record in sent}), 3)

    def test_received_data_is_recorded(self) -> None:
        address = self.start_listener()
        client = self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))

        client.sendall(b"hello")

        self.assertTrue(wait_until(lambda: len(self.records(Direction.RECEIVED)) == 1))
        record = self.records(Direction.RECEIVED)[0]
        self.assertEqual(record.text, "hello")
        self.assertEqual(record.hex, "68656c6c6f")
        self.assertEqual(self.manager.get_stats_snapshot().received_bytes, 5)

    def test_auto_response_replaces_field_27(self) -> None:
        self.manager.set_auto_respond(True)
        address = self.start_listener()
        client = self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))

        inbound = b"ABCDEFGHIJKLMNOPQRSTUVWXYZ0X123"
        client.sendall(inbound)

        expected = inbound[:27] + b"2" + inbound[28:]
        self.assertEqual(recv_exactly(client, len(expected)), expected)
        self.assertTrue(wait_until(lambda: len(self.records(Direction.SENT)) == 1))
        self.assertEqual(self.records(Direction.SENT)[0].text, expected.decode("latin-1"))
        self.assertEqual(self.manager.get_stats_snapshot().auto_responses, 1)

    def test_short_inbound_skips_auto_response(self) -> None:
        self.manager.set_auto_respond(True)
        address = self.start_listener()
        client = self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))

        with self.assertLogs("frame_tester.application.auto_responder", level="WARNING"):
            client.sendall(b"short")
            self.assertTrue(wait_until(lambda: self.manager.get_stats_snapshot().skipped_auto_responses == 1))

        client.settimeout(0.3)
        with self.assertRaises(socket.timeout):
            client.recv(1)
        self.assertEqual(self.records(Direction.SENT), [])

    def test_busy_session_rejects_configure_and_start(self) -> None:
        self.start_listener()
        with self.assertRaises(SessionBusyError):
            self.manager.configure(ConnectionConfig())
        with self.assertRaises(SessionBusyError):
            self.manager.start()

    def test_send_requires_connected_peer(self) -> None:
        with self.assertRaises(NoActiveSessionError):
            self.manager.send("AA")
        self.start_listener()
        with self.assertRaises(NoActiveSessionError):
            self.manager.send("AA")

    def test_malformed_send(self) -> None:
        address = self.start_listener()
        self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))
        with self.assertRaises(MalformedFrameError):
            self.manager.send("abc")
        with self.assertRaises(MalformedFrameError):
            self.manager.send("")
        self.assertEqual(self.records(Direction.SENT), [])

    def test_bind_failure_sets_error_status(self) -> None:
        blocker = socket.create_server(("127.0.0.1", 0))
        self._sockets.append(blocker)
        port = blocker.getsockname()[1]

        config = ConnectionConfig(role=ConnectionRole.LISTENER, local_address="127.0.0.1", local_port=port)
        self.assertEqual(self.manager.configure(config), ())
        with self.assertRaises(BindFailureError):
            self.manager.start()
        self.assertEqual(self.manager.status, SessionStatus.ERROR)
        self.assertIn("Bind failed", self.manager.status_message)

        self.manager.stop()
        self.assertEqual(self.manager.status, SessionStatus.DOWN)

    def test_stop_is_idempotent(self) -> None:
        self.manager.stop()
        self.manager.stop()
        self.assertEqual(self.manager.status, SessionStatus.DOWN)

        self.start_listener()
        self.manager.stop()
        self.assertEqual(self.manager.status, SessionStatus.DOWN)
        self.manager.stop()
        self.assertEqual(self.manager.status, SessionStatus.DOWN)

    def test_stop_releases_listening_port(self) -> None:
        host, port = self.start_listener()
        self.manager.stop()
        # a fresh listener on the same port must be possible once stopped
        self.assertTrue(wait_until(lambda: self._can_bind(host, port)))

    def _can_bind(self, host: str, port: int) -> bool:
        try:
            scratch = socket.create_server((host, port))
        except OSError:
            return False
        scratch.close()
        return True

    def test_start_requires_configuration(self) -> None:
        with self.assertRaises(NoConfigurationError):
            self.manager.start()


class TestConnectorSession(SessionTestCase):
    def test_connect_send_and_peer_close(self) -> None:
        server = socket.create_server(("127.0.0.1", 0))
        server.settimeout(3.0)
        self._sockets.append(server)
        port = server.getsockname()[1]

        config = ConnectionConfig(role=ConnectionRole.CONNECTOR, remote_address="127.0.0.1", remote_port=port)
        self.assertEqual(self.manager.configure(config), ())
        self.manager.start()
        self.assertIn(self.manager.status, {SessionStatus.CONNECTING, SessionStatus.CONNECTED})

        conn, _ = server.accept()
        self._sockets.append(conn)
        conn.settimeout(3.0)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))

        self.assertEqual(self.manager.send("414243"), 1)
        self.assertEqual(recv_exactly(conn, 3), b"ABC")

        conn.sendall(b"OK")
        self.assertTrue(wait_until(lambda: len(self.records(Direction.RECEIVED)) == 1))

        conn.close()
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.DOWN))
        self.assertEqual(self.manager.peers, [])

    def test_refused_connect_returns_to_down(self) -> None:
        port = free_port()
        config = ConnectionConfig(role=ConnectionRole.CONNECTOR, remote_address="127.0.0.1", remote_port=port)
        self.assertEqual(self.manager.configure(config), ())
        self.manager.start()

        self.assertTrue(
            wait_until(
                lambda: self.manager.status == SessionStatus.DOWN
                and bool(self.manager.get_stats_snapshot().last_error)
            )
        )
        errors = [event for event in self.manager.poll_events() if event.get("type") == "error"]
        self.assertTrue(errors)
        self.assertIsInstance(errors[-1]["error"], ConnectFailureError)

        # a failed attempt leaves the manager ready for another start
        self.assertEqual(self.manager.configure(config), ())


class TestDisplayPersistence(SessionTestCase):
    def test_records_are_reloaded_and_cleared(self) -> None:
        address = self.start_listener()
        client = self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))
        client.sendall(b"ping")
        self.assertTrue(wait_until(lambda: len(self.records(Direction.RECEIVED)) == 1))
        self.manager.stop()

        reloaded = SessionManager(
            display_log=DisplayLogWriter(self.log_path),
            profile_store=ProfileStore(Path(self._tmp.name) / "profiles.json"),
        )
        self.assertEqual([record.text for record in reloaded.records()], ["ping"])

        reloaded.clear_records()
        self.assertEqual(reloaded.records(), [])
        self.assertEqual(DisplayLogWriter(self.log_path).load(), [])

    def test_profiles_round_trip_through_manager(self) -> None:
        config = ConnectionConfig(role=ConnectionRole.CONNECTOR, remote_port=7000)
        self.manager.save_profile("bench", config)
        self.assertEqual(self.manager.list_profiles(), ["bench"])
        self.assertEqual(self.manager.load_profile("bench"), config)
        self.manager.delete_profile("bench")
        self.assertEqual(self.manager.list_profiles(), [])


class FlakyListener:
    """Listening socket whose next accept() calls raise the queued errors.

    A ``None`` entry lets that accept() through to the real socket.
    """

    def __init__(self, sock: socket.socket, failures: list) -> None:
        self._sock = sock
        self._failures = list(failures)

    def accept(self):
        if self._failures:
            failure = self._failures.pop(0)
            if failure is not None:
                raise failure
        return self._sock.accept()

    def __getattr__(self, name: str):
        return getattr(self._sock, name)


class RejectingWorker(TcpWorker):
    """Worker whose writes to peer id 2 fail like a broken connection."""

    rejected_peer_id = 2

    def write(self, peer, data: bytes) -> None:
        if peer.peer_id == self.rejected_peer_id:
            raise BrokenPipeError(errno.EPIPE, "Broken pipe")
        super().write(peer, data)


class TestListenerFailures(SessionTestCase):
    def use_listener_failures(self, failures: list) -> None:
        self.manager = SessionManager(
            display_log=DisplayLogWriter(self.log_path),
            profile_store=ProfileStore(Path(self._tmp.name) / "profiles.json"),
            listener_factory=lambda host, port: FlakyListener(open_listener(host, port), failures),
        )

    def test_aborted_accept_keeps_session_listening(self) -> None:
        aborted = ConnectionAbortedError(errno.ECONNABORTED, "Software caused connection abort")
        self.use_listener_failures([aborted])
        address = self.start_listener()

        self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))
        self.open_client(address)
        self.assertTrue(wait_until(lambda: len(self.manager.peers) == 2))
        self.assertEqual(self.manager.status, SessionStatus.CONNECTED)

    def test_listening_socket_failure_while_listening(self) -> None:
        self.use_listener_failures([OSError(errno.EBADF, "Bad file descriptor")])
        address = self.start_listener()

        self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.ERROR))
        self.assertIn("Listener error", self.manager.status_message)

        self.manager.stop()
        self.assertEqual(self.manager.status, SessionStatus.DOWN)

    def test_listening_socket_failure_while_connected(self) -> None:
        self.use_listener_failures([None, OSError(errno.EBADF, "Bad file descriptor")])
        address = self.start_listener()

        self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))
        self.open_client(address)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.ERROR))
        self.assertIn("Listener error", self.manager.status_message)
        self.assertEqual(self.manager.peers, [])

        self.manager.stop()
        self.assertEqual(self.manager.status, SessionStatus.DOWN)


class TestBroadcastFailures(SessionTestCase):
    def test_failed_peer_does_not_stop_broadcast(self) -> None:
        self.manager = SessionManager(
            display_log=DisplayLogWriter(self.log_path),
            profile_store=ProfileStore(Path(self._tmp.name) / "profiles.json"),
            worker_factory=RejectingWorker,
        )
        address = self.start_listener()
        clients = [self.open_client(address) for _ in range(3)]
        self.assertTrue(wait_until(lambda: len(self.manager.peers) == 3))
        rejected = next(peer for peer in self.manager.peers if peer.peer_id == RejectingWorker.rejected_peer_id)

        delivered = self.manager.send("AA")

        self.assertEqual(delivered, 2)
        self.assertEqual(len(self.records(Direction.SENT)), 2)
        self.assertNotIn(rejected.label, {record.peer for record in self.records(Direction.SENT)})
        self.assertEqual(self.manager.get_stats_snapshot().write_failures, 1)
        for client in clients:
            if client.getsockname()[1] != rejected.address[1]:
                self.assertEqual(recv_exactly(client, 1), b"\xaa")


class TestConnectorFailures(SessionTestCase):
    def connect_to_server(self) -> socket.socket:
        server = socket.create_server(("127.0.0.1", 0))
        server.settimeout(3.0)
        self._sockets.append(server)
        config = ConnectionConfig(
            role=ConnectionRole.CONNECTOR,
            remote_address="127.0.0.1",
            remote_port=server.getsockname()[1],
        )
        self.assertEqual(self.manager.configure(config), ())
        self.manager.start()
        conn, _ = server.accept()
        conn.settimeout(3.0)
        self._sockets.append(conn)
        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.CONNECTED))
        return conn

    def test_connector_auto_response_goes_back_to_peer(self) -> None:
        self.manager.set_auto_respond(True)
        conn = self.connect_to_server()

        inbound = b"0200" + b"9" * 23 + b"0" + b"XYZ"
        conn.sendall(inbound)

        expected = inbound[:27] + b"2" + inbound[28:]
        self.assertEqual(recv_exactly(conn, len(expected)), expected)
        self.assertTrue(wait_until(lambda: len(self.records(Direction.SENT)) == 1))
        self.assertEqual(self.records(Direction.SENT)[0].hex, expected.hex())
        self.assertEqual(self.manager.status, SessionStatus.CONNECTED)

    def test_connector_peer_reset_returns_to_down(self) -> None:
        conn = self.connect_to_server()

        # zero linger makes close() send RST instead of FIN
        conn.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
        conn.close()

        self.assertTrue(wait_until(lambda: self.manager.status == SessionStatus.DOWN))
        self.assertIn("Connection error", self.manager.get_stats_snapshot().last_error)
        self.assertEqual(self.manager.peers, [])


class TestEventQueueOverflow(SessionTestCase):
    def test_dropped_error_event_is_logged(self) -> None:
        self.manager = SessionManager(
            profile_store=ProfileStore(Path(self._tmp.name) / "profiles.json"),
            event_queue_size=1,
        )
        blocker = socket.create_server(("127.0.0.1", 0))
        self._sockets.append(blocker)
        config = ConnectionConfig(
            role=ConnectionRole.LISTENER,
            local_address="127.0.0.1",
            local_port=blocker.getsockname()[1],
        )
        self.assertEqual(self.manager.configure(config), ())

        with self.assertLogs("frame_tester.application.session_manager", level="WARNING") as captured:
            with self.assertRaises(BindFailureError):
                self.manager.start()

        self.assertTrue(any("dropped error event" in line for line in captured.output))
        self.assertEqual(len(self.manager.poll_events()), 1)


if __name__ == "__main__":
    unittest.main()
