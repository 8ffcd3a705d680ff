"""Bounded, persisted collection of chat sessions."""

import logging
import threading
import time
from typing import Any, Callable

from config.settings import settings
from deo.sessions.kv import KeyValueStore
from deo.sessions.models import Message, MessageRole, Session

logger = logging.getLogger(__name__)

SESSIONS_KEY = "deo.sessions"
ACTIVE_SESSION_KEY = "deo.activeSessionId"


class SessionStore:
    """
    Owns the session collection and the active-session id.

    Sessions are kept in creation order. The store never holds zero
    sessions: an empty store creates one on load. Once the count exceeds
    the cap the oldest sessions are evicted; once a session's log exceeds
    its cap the oldest messages are dropped. Every mutation is written
    through to the key-value store.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_sessions: int | None = None,
        max_messages: int | None = None,
        title_chars: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self._max_sessions = max_sessions or settings.sessions_max
        self._max_messages = max_messages or settings.session_max_messages
        self._title_chars = title_chars or settings.session_title_chars
        self._clock = clock
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._active_id = ""
        self._load()

    def _load(self) -> None:
        raw_sessions = self._kv.get(SESSIONS_KEY, []) or []
        for raw in raw_sessions:
            try:
                session = Session.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed session record: {e}")
                continue
            del session.messages[: -self._max_messages]
            self._sessions[session.id] = session

        active_id = self._kv.get(ACTIVE_SESSION_KEY, "")
        if active_id in self._sessions:
            self._active_id = active_id
        elif self._sessions:
            self._active_id = next(reversed(self._sessions))
        else:
            self.new_session()
            return
        self._evict()
        self.save()

    def save(self) -> None:
        """Write the session collection and active id to the key-value store."""
        with self._lock:
            self._kv.put(SESSIONS_KEY, [session.to_dict() for session in self._sessions.values()])
            self._kv.put(ACTIVE_SESSION_KEY, self._active_id)

    @property
    def active_id(self) -> str:
        return self._active_id

    @property
    def active(self) -> Session:
        return self._sessions[self._active_id]

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[Session]:
        """Sessions in creation order, oldest first."""
        with self._lock:
            return list(self._sessions.values())

    def _next_id(self) -> str:
        candidate = int(self._clock() * 1000)
        while str(candidate) in self._sessions:
            candidate += 1
        return str(candidate)

    def new_session(self) -> Session:
        """Create a session, make it active and evict the oldest beyond the cap."""
        with self._lock:
            session = Session(id=self._next_id(), created_at=self._clock())
            self._sessions[session.id] = session
            self._active_id = session.id
            self._evict()
            self.save()
            logger.info(f"Created session {session.id}")
            return session

    def set_active(self, session_id: str) -> Session:
        """
        Switch the active session.

        Raises:
            KeyError: if the session does not exist
        """
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(session_id)
            self._active_id = session_id
            self.save()
            return self._sessions[session_id]

    def _evict(self) -> None:
        while len(self._sessions) > self._max_sessions:
            oldest_id = next(iter(self._sessions))
            if oldest_id == self._active_id and len(self._sessions) > 1:
                # Never evict the active session; drop the next oldest instead
                oldest_id = list(self._sessions)[1]
            del self._sessions[oldest_id]
            logger.debug(f"Evicted session {oldest_id}")

    def append(self, session_id: str, message: Message) -> Message:
        """
        Append a message to a session's log.

        The first user message of an untitled session becomes its title.

        Raises:
            KeyError: if the session does not exist
        """
        with self._lock:
            session = self._sessions[session_id]
            session.messages.append(message)
            if len(session.messages) > self._max_messages:
                del session.messages[: len(session.messages) - self._max_messages]
            if message.role is MessageRole.USER and session.has_default_title:
                session.title = self.derive_title(message.text, session.title)
            self.save()
            return message

    def append_user(self, session_id: str, text: str) -> Message:
        return self.append(session_id, Message.user(text))

    def append_ai(self, session_id: str, text: str) -> Message:
        return self.append(session_id, Message.ai(text))

    def append_step(
        self,
        session_id: str,
        action: str,
        path: str | None,
        success: bool = True,
        text: str = "",
    ) -> Message:
        return self.append(session_id, Message.step(action, path, success=success, text=text))

    def derive_title(self, text: str, fallback: str) -> str:
        collapsed = " ".join(text.split())
        if not collapsed:
            return fallback
        if len(collapsed) <= self._title_chars:
            return collapsed
        return collapsed[: self._title_chars].rstrip() + "..."

    def summary(self) -> list[dict[str, Any]]:
        """Lightweight listing used by the CLI and the API."""
        with self._lock:
            return [
                {
                    "id": session.id,
                    "title": session.title,
                    "message_count": len(session.messages),
                    "created_at": session.created_at,
                    "active": session.id == self._active_id,
                }
                for session in self._sessions.values()
            ]
