"""sshfan: Run shell commands on many SSH hosts at once."""

from .config import Settings, load_settings
from .dispatcher import Dispatcher
from .hosts import HostDirectory
from .session import ChannelEvent, EventKind, RemoteSession, SessionStatus

__all__ = [
    "Settings",
    "load_settings",
    "Dispatcher",
    "HostDirectory",
    "ChannelEvent",
    "EventKind",
    "RemoteSession",
    "SessionStatus",
]
