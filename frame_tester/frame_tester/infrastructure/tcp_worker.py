from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import errno
import itertools
import logging
import selectors
import socket
import threading
import time

from frame_tester.domain.events import (
    DataReceived,
    PeerAccepted,
    PeerClosed,
    TransportEvent,
    TransportFailed,
)
from frame_tester.domain.models import ConnectionConfig, ConnectionRole, PeerConnection


logger = logging.getLogger(__name__)

RECV_BUFFER_SIZE = 4096
POLL_INTERVAL_SEC = 0.1
LISTEN_BACKLOG = 16
WRITE_TIMEOUT_SEC = 5.0

# accept() failures that concern only the pending connection, not the listener
TRANSIENT_ACCEPT_ERRNOS = frozenset(
    {errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM, errno.EPROTO, errno.EPERM}
)

_LISTENER_KEY = "listener"


def open_listener(address: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in address else socket.AF_INET
    return socket.create_server((address, port), family=family, backlog=LISTEN_BACKLOG)


@dataclass
class _PeerSlot:
    peer: PeerConnection
    sock: socket.socket
    write_lock: threading.Lock = field(default_factory=threading.Lock)


class TcpWorker(threading.Thread):
    """Owns every socket of one session and reports activity as events.

    All events are delivered from this thread, one at a time, so the
    receiver sees accept/data/close/error in a single serialized order.
    """

    def __init__(
        self,
        connection: ConnectionConfig,
        on_event: Callable[[TransportEvent], None],
        listener: socket.socket | None = None,
    ) -> None:
        super().__init__(daemon=True, name="tcp-worker")
        if connection.role == ConnectionRole.LISTENER and listener is None:
            raise ValueError("listener role requires a bound listening socket")

        self._connection = connection
        self._on_event = on_event
        self._listener = listener

        self._stop_event = threading.Event()
        self._selector = selectors.DefaultSelector()
        self._peers: dict[int, _PeerSlot] = {}
        self._peers_lock = threading.Lock()
        self._peer_ids = itertools.count(1)

    @property
    def listening_address(self) -> tuple[str, int] | None:
        if self._listener is None:
            return None
        try:
            host, port = self._listener.getsockname()[:2]
        except OSError:
            return None
        return host, port

    def peers(self) -> list[PeerConnection]:
        with self._peers_lock:
            return [slot.peer for slot in self._peers.values()]

    def stop(self) -> None:
        self._stop_event.set()

    def write(self, peer: PeerConnection, data: bytes) -> None:
        """Send one whole frame to ``peer``.

        Writes to the same peer are serialized so frames from the UI and
        from the auto-responder never interleave on the wire. A peer that
        stops reading makes this raise ``TimeoutError`` after
        ``WRITE_TIMEOUT_SEC``.
        """
        with self._peers_lock:
            slot = self._peers.get(peer.peer_id)
        if slot is None:
            raise ConnectionResetError(errno.ENOTCONN, f"peer {peer.label} is not attached")
        with slot.write_lock:
            slot.sock.sendall(data)

    def _attach(self, sock: socket.socket, address: tuple[str, int]) -> PeerConnection:
        sock.settimeout(WRITE_TIMEOUT_SEC)
        peer = PeerConnection(peer_id=next(self._peer_ids), address=(str(address[0]), int(address[1])))
        with self._peers_lock:
            self._peers[peer.peer_id] = _PeerSlot(peer=peer, sock=sock)
        self._selector.register(sock, selectors.EVENT_READ, peer)
        return peer

    def _detach(self, peer: PeerConnection) -> None:
        with self._peers_lock:
            slot = self._peers.pop(peer.peer_id, None)
        if slot is None:
            return
        try:
            self._selector.unregister(slot.sock)
        except (KeyError, ValueError):
            pass
        try:
            slot.sock.close()
        except OSError:
            pass

    def _connect(self) -> socket.socket | None:
        """Non-blocking connect so that stop() is honoured while connecting."""
        host = self._connection.remote_address
        port = self._connection.remote_port
        timeout = self._connection.connect_timeout_sec
        try:
            family, socktype, proto, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)[0]
        except OSError as exc:
            self._on_event(TransportFailed(peer=None, error=exc))
            return None

        sock = socket.socket(family, socktype, proto)
        sock.setblocking(False)
        deadline = time.monotonic() + timeout if timeout is not None else None
        try:
            code = sock.connect_ex(sockaddr)
            if code not in (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY):
                raise OSError(code, f"connect to {host}:{port} failed: {errno.errorcode.get(code, code)}")

            with selectors.DefaultSelector() as waiter:
                waiter.register(sock, selectors.EVENT_WRITE)
                while code != 0:
                    if self._stop_event.is_set():
                        sock.close()
                        return None
                    if deadline is not None and time.monotonic() >= deadline:
                        raise TimeoutError(errno.ETIMEDOUT, f"connect to {host}:{port} timed out")
                    if waiter.select(timeout=POLL_INTERVAL_SEC):
                        code = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
                        if code != 0:
                            raise OSError(code, f"connect to {host}:{port} failed: {errno.errorcode.get(code, code)}")
                        break
        except OSError as exc:
            sock.close()
            self._on_event(TransportFailed(peer=None, error=exc))
            return None
        return sock

    def _accept(self) -> bool:
        assert self._listener is not None
        try:
            sock, address = self._listener.accept()
        except (BlockingIOError, InterruptedError, ConnectionAbortedError):
            return True
        except OSError as exc:
            if exc.errno not in TRANSIENT_ACCEPT_ERRNOS:
                self._on_event(TransportFailed(peer=None, error=exc))
                return False
            logger.warning("Accept failed, listener kept open: %s", exc)
            # the pending connection stays queued, so the listener is readable again at once
            self._stop_event.wait(POLL_INTERVAL_SEC)
            return True
        peer = self._attach(sock, address)
        logger.info("Peer connected: %s", peer.label)
        self._on_event(PeerAccepted(peer=peer))
        return True

    def _receive(self, peer: PeerConnection, sock: socket.socket) -> None:
        try:
            data = sock.recv(RECV_BUFFER_SIZE)
        except OSError as exc:
            self._detach(peer)
            self._on_event(TransportFailed(peer=peer, error=exc))
            return

        if not data:
            self._detach(peer)
            logger.info("Peer disconnected: %s", peer.label)
            self._on_event(PeerClosed(peer=peer))
            return

        self._on_event(DataReceived(peer=peer, payload=data))

    def _close_all(self) -> None:
        for peer in self.peers():
            self._detach(peer)
        if self._listener is not None:
            try:
                self._selector.unregister(self._listener)
            except (KeyError, ValueError):
                pass
            self._listener.close()
        self._selector.close()

    def run(self) -> None:
        try:
            if self._listener is not None:
                self._listener.setblocking(False)
                self._selector.register(self._listener, selectors.EVENT_READ, _LISTENER_KEY)
            else:
                sock = self._connect()
                if sock is None:
                    return
                if self._stop_event.is_set():
                    sock.close()
                    return
                try:
                    address = sock.getpeername()[:2]
                except OSError as exc:
                    sock.close()
                    self._on_event(TransportFailed(peer=None, error=exc))
                    return
                peer = self._attach(sock, address)
                logger.info("Connected to %s", peer.label)
                self._on_event(PeerAccepted(peer=peer))

            while not self._stop_event.is_set():
                if not self._selector.get_map():
                    # connector peer is gone; nothing left to watch
                    return
                for key, _ in self._selector.select(timeout=POLL_INTERVAL_SEC):
                    if self._stop_event.is_set():
                        break
                    if key.data == _LISTENER_KEY:
                        if not self._accept():
                            return
                    else:
                        self._receive(key.data, key.fileobj)
        finally:
            self._close_all()
