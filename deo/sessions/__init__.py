"""Chat session components."""

from deo.sessions.kv import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from deo.sessions.models import Message, MessageRole, Session
from deo.sessions.store import SessionStore

__all__ = [
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "Message",
    "MessageRole",
    "Session",
    "SessionStore",
]
