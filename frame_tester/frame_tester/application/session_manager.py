from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from functools import partial
import logging
import queue
import socket
import threading
from typing import Any

from frame_tester.application.auto_responder import build_auto_response
from frame_tester.application.frame_codec import (
    bytes_to_display_pair,
    decode_hex,
    display_text_to_bytes,
)
from frame_tester.application.preflight import run_preflight
from frame_tester.domain import (
    BindFailureError,
    ConnectFailureError,
    ConnectionConfig,
    ConnectionRole,
    DataReceived,
    Direction,
    DisplayRecord,
    MalformedFrameError,
    NoActiveSessionError,
    NoConfigurationError,
    PeerAccepted,
    PeerClosed,
    PeerConnection,
    SessionBusyError,
    SessionStats,
    SessionStatus,
    StateMachine,
    TransportEvent,
    TransportFailed,
)
from frame_tester.infrastructure import DisplayLogWriter, ProfileStore, TcpWorker, open_listener


logger = logging.getLogger(__name__)

WorkerFactory = Callable[..., TcpWorker]
ListenerFactory = Callable[[str, int], socket.socket]

EVENT_QUEUE_SIZE = 5000


class SessionManager:
    def __init__(
        self,
        display_log: DisplayLogWriter | None = None,
        profile_store: ProfileStore | None = None,
        worker_factory: WorkerFactory = TcpWorker,
        listener_factory: ListenerFactory = open_listener,
        event_queue_size: int = EVENT_QUEUE_SIZE,
    ) -> None:
        self._state_machine = StateMachine()
        self._stats = SessionStats()
        self._events: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=event_queue_size)
        self._worker: TcpWorker | None = None
        self._config: ConnectionConfig | None = None
        self._warnings: tuple[str, ...] = ()
        self._generation = 0
        self._auto_respond = False
        self._display_log = display_log
        self._records: list[DisplayRecord] = display_log.load() if display_log is not None else []
        self._profile_store = profile_store or ProfileStore()
        self._worker_factory = worker_factory
        self._listener_factory = listener_factory
        self._lock = threading.RLock()

    @property
    def status(self) -> SessionStatus:
        return self._state_machine.state

    @property
    def status_message(self) -> str:
        return self._state_machine.message

    @property
    def config(self) -> ConnectionConfig | None:
        return self._config

    @property
    def auto_respond(self) -> bool:
        return self._auto_respond

    def set_auto_respond(self, enabled: bool) -> None:
        self._auto_respond = bool(enabled)
        logger.info("Auto-response %s", "enabled" if enabled else "disabled")

    @property
    def peers(self) -> list[PeerConnection]:
        worker = self._worker
        return worker.peers() if worker is not None else []

    @property
    def listening_address(self) -> tuple[str, int] | None:
        worker = self._worker
        return worker.listening_address if worker is not None else None

    def get_stats_snapshot(self) -> SessionStats:
        with self._lock:
            return replace(self._stats, peer_count=len(self.peers))

    def records(self) -> list[DisplayRecord]:
        with self._lock:
            return list(self._records)

    def clear_records(self) -> None:
        with self._lock:
            self._records.clear()
        if self._display_log is not None:
            self._display_log.clear()
        self._emit_event({"type": "records_cleared"})

    def configure(self, config: ConnectionConfig) -> tuple[str, ...]:
        with self._lock:
            if self.status != SessionStatus.DOWN:
                raise SessionBusyError(f"Cannot configure while session is {self.status.value}.")

            preflight = run_preflight(config)
            if preflight.errors:
                self._emit_event({"type": "preflight_failed", "errors": list(preflight.errors)})
                return preflight.errors

            self._config = config
            self._warnings = preflight.warnings
            return ()

    def start(self) -> None:
        with self._lock:
            if self.status != SessionStatus.DOWN:
                raise SessionBusyError(f"A session is already {self.status.value}; stop it first.")
            config = self._config
            if config is None:
                raise NoConfigurationError("No connection configured.")

            self._generation += 1
            on_event = partial(self._dispatch, self._generation)
            self._stats = SessionStats(start_time=datetime.now())
            self._move_state(SessionStatus.STARTING)

            if config.role == ConnectionRole.LISTENER:
                try:
                    listener = self._listener_factory(config.local_address, config.local_port)
                except OSError as exc:
                    failure = BindFailureError(f"Bind failed on {config.local_address}:{config.local_port}: {exc}")
                    logger.error(str(failure))
                    self._stats.last_error = str(failure)
                    self._stats.end_time = datetime.now()
                    self._move_state(SessionStatus.ERROR, str(failure))
                    self._emit_event({"type": "error", "message": str(failure), "error": failure})
                    raise failure from exc

                worker = self._worker_factory(config, on_event=on_event, listener=listener)
                self._worker = worker
                self._move_state(SessionStatus.LISTENING)
                host, port = worker.listening_address or (config.local_address, config.local_port)
                logger.info("Listening on %s:%s", host, port)
            else:
                worker = self._worker_factory(config, on_event=on_event, listener=None)
                self._worker = worker
                self._move_state(SessionStatus.CONNECTING)
                logger.info("Connecting to %s:%s", config.remote_address, config.remote_port)

            worker.start()
            self._emit_event(
                {
                    "type": "session_started",
                    "role": config.role.value,
                    "warnings": list(self._warnings),
                }
            )

    def stop(self, reason: str = "user_stop") -> None:
        with self._lock:
            worker = self._worker
            self._worker = None
            previous = self.status
            if worker is None and previous == SessionStatus.DOWN:
                return

            self._generation += 1
            self._stats.end_time = datetime.now()
            self._state_machine.reset()
            self._emit_event({"type": "state", "state": SessionStatus.DOWN.value, "message": ""})

        if worker is not None:
            worker.stop()
            if threading.current_thread() is not worker:
                worker.join(timeout=2.0)

        logger.info("Session stopped (%s)", reason)
        self._emit_event({"type": "session_stopped", "reason": reason})

    def shutdown(self) -> None:
        self.stop(reason="shutdown")

    def send(self, hex_string: str) -> int:
        with self._lock:
            worker = self._worker
            if self.status != SessionStatus.CONNECTED or worker is None:
                raise NoActiveSessionError("No active TCP connection to send data.")

        data = decode_hex(hex_string)
        if not data:
            raise MalformedFrameError("Frame is empty.")

        delivered = 0
        for peer in worker.peers():
            try:
                worker.write(peer, data)
            except OSError as exc:
                self._record_write_failure(peer, exc)
                continue
            self._emit_record(Direction.SENT, data, peer)
            delivered += 1
        return delivered

    def poll_events(self) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                break
        return events

    def list_profiles(self) -> list[str]:
        return self._profile_store.list_names()

    def save_profile(self, name: str, config: ConnectionConfig) -> None:
        self._profile_store.save_profile(name, config)

    def load_profile(self, name: str) -> ConnectionConfig | None:
        return self._profile_store.load_profile(name)

    def delete_profile(self, name: str) -> None:
        self._profile_store.delete_profile(name)

    def _dispatch(self, generation: int, event: TransportEvent) -> None:
        with self._lock:
            worker = self._worker
            if generation != self._generation or worker is None:
                return

            if isinstance(event, PeerAccepted):
                self._on_peer_accepted(event.peer)
            elif isinstance(event, PeerClosed):
                self._on_peer_gone(worker, event.peer, None)
            elif isinstance(event, TransportFailed):
                if event.peer is None:
                    self._on_endpoint_failed(worker, event.error)
                else:
                    self._on_peer_gone(worker, event.peer, event.error)

        if isinstance(event, DataReceived):
            self._on_data(worker, event.peer, event.payload)

    def _on_peer_accepted(self, peer: PeerConnection) -> None:
        if self.status in {SessionStatus.LISTENING, SessionStatus.CONNECTING}:
            self._move_state(SessionStatus.CONNECTED)
        self._emit_event({"type": "status", "message": f"Peer connected: {peer.label}"})

    def _on_peer_gone(self, worker: TcpWorker, peer: PeerConnection, error: OSError | None) -> None:
        if error is not None:
            message = f"Connection error ({peer.label}): {error}"
            logger.error(message)
            self._stats.last_error = message
            self._emit_event({"type": "error", "message": message})
        else:
            self._emit_event({"type": "status", "message": f"Peer disconnected: {peer.label}"})

        if self._config is not None and self._config.role == ConnectionRole.CONNECTOR:
            self._release(worker)
            return

        if not worker.peers() and self.status == SessionStatus.CONNECTED:
            self._move_state(SessionStatus.LISTENING)

    def _on_endpoint_failed(self, worker: TcpWorker, error: OSError) -> None:
        if self._config is not None and self._config.role == ConnectionRole.CONNECTOR:
            config = self._config
            failure = ConnectFailureError(f"Connect to {config.remote_address}:{config.remote_port} failed: {error}")
            logger.error(str(failure))
            self._stats.last_error = str(failure)
            self._emit_event({"type": "error", "message": str(failure), "error": failure})
            self._release(worker)
            return

        message = f"Listener error: {error}"
        logger.error(message)
        self._stats.last_error = message
        self._stats.end_time = datetime.now()
        self._worker = None
        self._generation += 1
        worker.stop()
        self._move_state(SessionStatus.ERROR, message)
        self._emit_event({"type": "error", "message": message})

    def _release(self, worker: TcpWorker) -> None:
        self._worker = None
        self._generation += 1
        self._stats.end_time = datetime.now()
        worker.stop()
        self._move_state(SessionStatus.DOWN)

    def _on_data(self, worker: TcpWorker, peer: PeerConnection, payload: bytes) -> None:
        text, _ = self._emit_record(Direction.RECEIVED, payload, peer)
        if not self._auto_respond:
            return

        response = build_auto_response(text)
        if response is None:
            with self._lock:
                self._stats.skipped_auto_responses += 1
            return

        data = display_text_to_bytes(response)
        try:
            worker.write(peer, data)
        except OSError as exc:
            self._record_write_failure(peer, exc)
            return

        with self._lock:
            self._stats.auto_responses += 1
        self._emit_record(Direction.SENT, data, peer)

    def _emit_record(self, direction: Direction, data: bytes, peer: PeerConnection) -> tuple[str, str]:
        text, hex_text = bytes_to_display_pair(data)
        record = DisplayRecord(
            direction=direction,
            text=text,
            hex=hex_text,
            timestamp=datetime.now(),
            peer=peer.label,
        )
        with self._lock:
            self._records.append(record)
            if direction == Direction.SENT:
                self._stats.sent_frames += 1
                self._stats.sent_bytes += len(data)
            else:
                self._stats.received_frames += 1
                self._stats.received_bytes += len(data)

        if self._display_log is not None:
            self._display_log.append(record)
        self._emit_event({"type": "record", "record": record})
        return text, hex_text

    def _record_write_failure(self, peer: PeerConnection, exc: OSError) -> None:
        message = f"Write to {peer.label} failed: {exc}"
        logger.warning(message)
        with self._lock:
            self._stats.write_failures += 1
            self._stats.last_error = message
        self._emit_event({"type": "error", "message": message})

    def _move_state(self, to_state: SessionStatus, message: str = "") -> None:
        if self.status == to_state:
            return
        self._state_machine.transition(to_state, message)
        logger.debug("Session status -> %s", to_state.value)
        self._emit_event({"type": "state", "state": to_state.value, "message": message})

    def _emit_event(self, event: dict[str, Any]) -> None:
        try:
            self._events.put_nowait(event)
        except queue.Full:
            if event.get("type") == "record":
                with self._lock:
                    self._stats.dropped_events += 1
            else:
                logger.warning(
                    "UI event queue full; dropped %s event: %s",
                    event.get("type"),
                    event.get("message") or event.get("state") or "",
                )
