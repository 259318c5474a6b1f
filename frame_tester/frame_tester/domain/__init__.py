from .errors import (
    BindFailureError,
    ConnectFailureError,
    FrameTesterError,
    MalformedFrameError,
    NoActiveSessionError,
    NoConfigurationError,
    SessionBusyError,
)
from .events import DataReceived, PeerAccepted, PeerClosed, TransportEvent, TransportFailed
from .models import (
    ConnectionConfig,
    ConnectionRole,
    Direction,
    DisplayRecord,
    FieldDescriptor,
    PeerConnection,
    SessionStats,
)
from .state_machine import InvalidTransitionError, SessionStatus, StateMachine

__all__ = [
    "BindFailureError",
    "ConnectFailureError",
    "ConnectionConfig",
    "ConnectionRole",
    "DataReceived",
    "Direction",
    "DisplayRecord",
    "FieldDescriptor",
    "FrameTesterError",
    "InvalidTransitionError",
    "MalformedFrameError",
    "NoActiveSessionError",
    "NoConfigurationError",
    "PeerAccepted",
    "PeerClosed",
    "PeerConnection",
    "SessionBusyError",
    "SessionStats",
    "SessionStatus",
    "StateMachine",
    "TransportEvent",
    "TransportFailed",
]
