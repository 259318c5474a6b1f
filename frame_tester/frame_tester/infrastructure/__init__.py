from .app_settings_store import AppSettingsStore
from .display_log_writer import DisplayLogWriter
from .iso_config_store import IsoConfigStore
from .logging_config import configure_logging
from .profile_store import ProfileStore
from .tcp_worker import TcpWorker, open_listener

__all__ = [
    "AppSettingsStore",
    "DisplayLogWriter",
    "IsoConfigStore",
    "ProfileStore",
    "TcpWorker",
    "configure_logging",
    "open_listener",
]
