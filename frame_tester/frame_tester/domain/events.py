from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .models import PeerConnection


@dataclass(frozen=True)
class PeerAccepted:
    peer: PeerConnection


@dataclass(frozen=True)
class DataReceived:
    peer: PeerConnection
    payload: bytes


@dataclass(frozen=True)
class PeerClosed:
    peer: PeerConnection


@dataclass(frozen=True)
class TransportFailed:
    # peer is None when the listening socket or the outbound connect failed
    peer: PeerConnection | None
    error: OSError


TransportEvent = Union[PeerAccepted, DataReceived, PeerClosed, TransportFailed]
