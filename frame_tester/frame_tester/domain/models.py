from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal


LengthType = Literal["Fixed", "Variable"]
DataType = Literal["Numeric", "Alphanumeric"]
Justification = Literal["Left", "Right"]


class ConnectionRole(str, Enum):
    LISTENER = "listener"
    CONNECTOR = "connector"


class Direction(str, Enum):
    SENT = "sent"
    RECEIVED = "received"


@dataclass(frozen=True)
class ConnectionConfig:
    role: ConnectionRole = ConnectionRole.LISTENER
    local_address: str = "127.0.0.1"
    local_port: int = 1234
    remote_address: str = "127.0.0.1"
    remote_port: int = 63156
    connect_timeout_sec: float | None = None


@dataclass(frozen=True)
class PeerConnection:
    peer_id: int
    address: tuple[str, int]

    @property
    def label(self) -> str:
        return f"{self.address[0]}:{self.address[1]}"


@dataclass(frozen=True)
class DisplayRecord:
    direction: Direction
    text: str
    hex: str
    timestamp: datetime
    peer: str = ""


@dataclass
class SessionStats:
    sent_frames: int = 0
    received_frames: int = 0
    sent_bytes: int = 0
    received_bytes: int = 0
    write_failures: int = 0
    auto_responses: int = 0
    skipped_auto_responses: int = 0
    dropped_events: int = 0
    peer_count: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_error: str = ""


@dataclass(frozen=True)
class FieldDescriptor:
    bmp_position: int
    length_type: LengthType = "Fixed"
    data_type: DataType = "Numeric"
    justification: Justification = "Right"
    filler: str = "0"
    field_name: str = ""
    default_value: str = ""
