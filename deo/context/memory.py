"""Compact digest of recent conversation turns."""

from typing import Iterable

from config.settings import settings
from deo.sessions.models import Message, MessageRole

NO_CONTEXT = "No previous conversation context."


class MemorySummarizer:
    """Renders the most recent turns of a session as a short digest."""

    def __init__(self, window: int | None = None) -> None:
        self._window = window or settings.memory_window

    def summarize(self, messages: Iterable[Message]) -> str:
        """
        Build the digest for the next prompt.

        A turn is a user message plus the ai and step messages that follow
        it, so a long turn never pushes earlier requests out of the window.

        Args:
            messages: Session history, excluding the request being answered

        Returns:
            One line per message of the last `window` turns, or a
            placeholder when there is no history
        """
        turns: list[list[Message]] = []
        for message in messages:
            if message.role is MessageRole.USER or not turns:
                turns.append([])
            turns[-1].append(message)

        recent = [message for turn in turns[-self._window :] for message in turn]
        lines = [line for line in (self._render(message) for message in recent) if line]
        if not lines:
            return NO_CONTEXT
        return "\n".join(lines)

    @staticmethod
    def _render(message: Message) -> str:
        if message.role is MessageRole.USER:
            return f"User: {message.text.strip()}"
        if message.role is MessageRole.AI:
            first_line = message.text.strip().splitlines()[0] if message.text.strip() else ""
            return f"Assistant: {first_line}" if first_line else ""
        # Step messages record one executed action
        target = message.path or "editor"
        return f"Step: {message.action or 'action'} on {target}"
