"""Error taxonomy for the agent core."""


class DeoError(Exception):
    """Base class for all agent errors."""


class TransportError(DeoError):
    """The inference endpoint is unreachable or returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PlanParseError(DeoError):
    """Model output did not match any recognized plan shape."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class SandboxViolation(DeoError):
    """An action path resolves outside the workspace root."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Access denied. Cannot write outside workspace: {path}")
        self.path = path


class ActionExecutionError(DeoError):
    """A filesystem operation failed for a specific action."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class NoWorkspaceError(DeoError):
    """A path-bearing action was requested but no workspace root is open."""

    def __init__(self, message: str = "No workspace open.") -> None:
        super().__init__(message)


class NoEditTargetError(DeoError):
    """insert_code was requested but there is no active editing surface."""

    def __init__(self, message: str = "No visible editor.") -> None:
        super().__init__(message)


class TurnInProgressError(DeoError):
    """A turn is already running for the session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"A turn is already in progress for session {session_id}")
        self.session_id = session_id


class InvalidTransition(DeoError):
    """The agent state machine received an event that is illegal in its state."""
