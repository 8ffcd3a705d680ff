"""Typed notifications emitted by the agent loop for presentation layers."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable


class EventKind(str, Enum):
    """Notification kinds."""

    STATUS = "status"
    PLAN = "plan"
    PROGRESS = "progress"
    SUMMARY = "summary"
    ERROR = "error"


@dataclass
class AgentEvent:
    """One notification. Progress events carry the action, path and outcome."""

    kind: EventKind
    text: str
    session_id: str = ""
    action: str | None = None
    path: str | None = None
    success: bool | None = None
    step: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


EventCallback = Callable[[AgentEvent], None]
