"""Shared counter, chat and poll state broadcast to viewers over an event stream."""

from .actions import ActionDispatcher
from .backends import KeyValueBackend, MemoryBackend, RedisBackend
from .models import RealtimeSnapshot
from .notifier import ChangeNotifier
from .publisher import SnapshotStreamPublisher
from .store import RealtimeStore

__all__ = [
    "ActionDispatcher",
    "ChangeNotifier",
    "KeyValueBackend",
    "MemoryBackend",
    "RealtimeSnapshot",
    "RealtimeStore",
    "RedisBackend",
    "SnapshotStreamPublisher",
]
