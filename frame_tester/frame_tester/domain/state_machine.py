from __future__ import annotations

from enum import Enum


class SessionStatus(str, Enum):
    DOWN = "DOWN"
    STARTING = "STARTING"
    LISTENING = "LISTENING"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.DOWN: {SessionStatus.STARTING},
    SessionStatus.STARTING: {
        SessionStatus.LISTENING,
        SessionStatus.CONNECTING,
        SessionStatus.ERROR,
        SessionStatus.DOWN,
    },
    SessionStatus.LISTENING: {SessionStatus.CONNECTED, SessionStatus.ERROR, SessionStatus.DOWN},
    SessionStatus.CONNECTING: {SessionStatus.CONNECTED, SessionStatus.DOWN},
    SessionStatus.CONNECTED: {SessionStatus.LISTENING, SessionStatus.ERROR, SessionStatus.DOWN},
    SessionStatus.ERROR: {SessionStatus.DOWN},
}


class InvalidTransitionError(RuntimeError):
    pass


class StateMachine:
    def __init__(self) -> None:
        self._state = SessionStatus.DOWN
        self._message = ""

    @property
    def state(self) -> SessionStatus:
        return self._state

    @property
    def message(self) -> str:
        """Detail for the ERROR state; empty otherwise."""
        return self._message

    def can_transition(self, to_state: SessionStatus) -> bool:
        return to_state in _TRANSITIONS[self._state]

    def transition(self, to_state: SessionStatus, message: str = "") -> None:
        if not self.can_transition(to_state):
            raise InvalidTransitionError(f"Invalid transition: {self._state.value} -> {to_state.value}")
        self._state = to_state
        self._message = message if to_state == SessionStatus.ERROR else ""

    def reset(self) -> None:
        # stop() is allowed from every state, including DOWN
        self._state = SessionStatus.DOWN
        self._message = ""
