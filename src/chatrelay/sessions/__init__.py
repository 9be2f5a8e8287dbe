"""Session tree access: cache, channel bindings and per-root locks."""

from chatrelay.sessions.cache import CacheStats, SessionCache
from chatrelay.sessions.locks import SessionLockRegistry
from chatrelay.sessions.tracker import ChannelStateTracker

__all__ = [
    "CacheStats",
    "ChannelStateTracker",
    "SessionCache",
    "SessionLockRegistry",
]
