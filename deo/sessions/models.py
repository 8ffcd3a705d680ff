"""Data models for chat sessions."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MessageRole(str, Enum):
    """Kinds of messages in a session log."""

    USER = "user"
    AI = "ai"
    STEP = "step"


@dataclass
class Message:
    """A single entry in a session's message log."""

    role: MessageRole
    text: str = ""
    action: str | None = None  # step only
    path: str | None = None  # step only
    success: bool | None = None  # step only
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=MessageRole.USER, text=text)

    @classmethod
    def ai(cls, text: str) -> "Message":
        return cls(role=MessageRole.AI, text=text)

    @classmethod
    def step(cls, action: str, path: str | None, success: bool = True, text: str = "") -> "Message":
        return cls(role=MessageRole.STEP, text=text, action=action, path=path, success=success)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }
        if self.role is MessageRole.STEP:
            data["action"] = self.action
            data["path"] = self.path
            data["success"] = self.success
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=MessageRole(data["role"]),
            text=data.get("text", ""),
            action=data.get("action"),
            path=data.get("path"),
            success=data.get("success"),
            timestamp=data.get("timestamp", time.time()),
        )


DEFAULT_TITLE = "New Chat"


@dataclass
class Session:
    """An ordered message log with a short human label."""

    id: str
    title: str = DEFAULT_TITLE
    messages: list[Message] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @property
    def has_default_title(self) -> bool:
        return self.title == DEFAULT_TITLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "messages": [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or DEFAULT_TITLE,
            messages=[Message.from_dict(item) for item in data.get("messages", [])],
            created_at=data.get("createdAt", time.time()),
        )
