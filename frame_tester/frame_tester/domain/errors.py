from __future__ import annotations


class FrameTesterError(Exception):
    pass


class SessionBusyError(FrameTesterError):
    pass


class NoConfigurationError(FrameTesterError):
    pass


class NoActiveSessionError(FrameTesterError):
    pass


class BindFailureError(FrameTesterError):
    pass


class ConnectFailureError(FrameTesterError):
    pass


class MalformedFrameError(FrameTesterError, ValueError):
    pass
