"""Action schema and turn state machine for the agent loop."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from deo.agent.modes import LoopMode
from deo.errors import InvalidTransition


class ActionKind(str, Enum):
    """Actions the model may request."""

    CREATE_FOLDER = "create_folder"
    CREATE_FILE = "create_file"
    EDIT_FILE = "edit_file"
    INSERT_CODE = "insert_code"
    DONE = "done"
    UNKNOWN = "unknown"

    @classmethod
    def from_tag(cls, tag: Any) -> "ActionKind":
        """Map a raw action tag to a kind; unrecognized tags map to UNKNOWN."""
        if not isinstance(tag, str):
            return cls.UNKNOWN
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == tag.strip():
                return kind
        return cls.UNKNOWN

    @property
    def requires_path(self) -> bool:
        return self in PATH_ACTIONS

    @property
    def writes_content(self) -> bool:
        return self in (ActionKind.CREATE_FILE, ActionKind.EDIT_FILE)


PATH_ACTIONS = frozenset(
    {ActionKind.CREATE_FOLDER, ActionKind.CREATE_FILE, ActionKind.EDIT_FILE}
)


@dataclass(frozen=True)
class ActionSpec:
    """A single action decoded from model output."""

    kind: ActionKind
    path: str | None = None
    content: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.kind.value}
        if self.path is not None:
            data["path"] = self.path
        if self.content is not None:
            data["content"] = self.content
        return data

    def describe(self) -> str:
        if self.path:
            return f"{self.kind.value} on {self.path}"
        return self.kind.value


@dataclass
class Plan:
    """Ordered actions produced by one inference call."""

    actions: list[ActionSpec]
    description: str | None = None

    @property
    def has_done(self) -> bool:
        return any(action.kind is ActionKind.DONE for action in self.actions)


@dataclass
class ExecutionOutcome:
    """Result of executing one action."""

    kind: ActionKind
    success: bool
    message: str
    path: str | None = None
    error: str | None = None  # sandbox_violation | action_execution | no_edit_target | unknown_action


class TurnState(str, Enum):
    """States of a single agent turn."""

    IDLE = "idle"
    BUILDING_CONTEXT = "building_context"
    AWAITING_INFERENCE = "awaiting_inference"
    PARSING_PLAN = "parsing_plan"
    EXECUTING_ACTIONS = "executing_actions"
    CONTINUE = "continue"
    DONE = "done"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.DONE, TurnState.ABORTED)


class TurnEvent(str, Enum):
    """Events that drive turn state transitions."""

    REQUEST_RECEIVED = "request_received"
    CONTEXT_READY = "context_ready"
    RESPONSE_RECEIVED = "response_received"
    TRANSPORT_FAILED = "transport_failed"
    PLAN_PARSED = "plan_parsed"
    PARSE_FAILED = "parse_failed"
    ACTIONS_EXECUTED = "actions_executed"
    DONE_SIGNALLED = "done_signalled"
    WORKSPACE_MISSING = "workspace_missing"
    NEXT_STEP = "next_step"
    BUDGET_EXHAUSTED = "budget_exhausted"


_TRANSITIONS: dict[tuple[TurnState, TurnEvent], TurnState] = {
    (TurnState.IDLE, TurnEvent.REQUEST_RECEIVED): TurnState.BUILDING_CONTEXT,
    (TurnState.BUILDING_CONTEXT, TurnEvent.CONTEXT_READY): TurnState.AWAITING_INFERENCE,
    (TurnState.AWAITING_INFERENCE, TurnEvent.RESPONSE_RECEIVED): TurnState.PARSING_PLAN,
    (TurnState.AWAITING_INFERENCE, TurnEvent.TRANSPORT_FAILED): TurnState.ABORTED,
    (TurnState.PARSING_PLAN, TurnEvent.PLAN_PARSED): TurnState.EXECUTING_ACTIONS,
    (TurnState.EXECUTING_ACTIONS, TurnEvent.DONE_SIGNALLED): TurnState.DONE,
    (TurnState.EXECUTING_ACTIONS, TurnEvent.WORKSPACE_MISSING): TurnState.ABORTED,
    (TurnState.CONTINUE, TurnEvent.NEXT_STEP): TurnState.AWAITING_INFERENCE,
    (TurnState.CONTINUE, TurnEvent.BUDGET_EXHAUSTED): TurnState.DONE,
    (TurnState.AWAITING_INFERENCE, TurnEvent.BUDGET_EXHAUSTED): TurnState.DONE,
}


def transition(state: TurnState, event: TurnEvent, mode: LoopMode) -> TurnState:
    """
    Compute the next turn state.

    Pure function of (state, event, mode); mode only matters where the two
    loop shapes diverge: parse failures and the end of a plan.

    Raises:
        InvalidTransition: if the event is illegal in the given state
    """
    if state is TurnState.PARSING_PLAN and event is TurnEvent.PARSE_FAILED:
        if mode is LoopMode.ITERATIVE:
            return TurnState.AWAITING_INFERENCE
        return TurnState.ABORTED

    if state is TurnState.EXECUTING_ACTIONS and event is TurnEvent.ACTIONS_EXECUTED:
        if mode is LoopMode.ITERATIVE:
            return TurnState.CONTINUE
        return TurnState.DONE

    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(
            f"Event {event.value} is not valid in state {state.value}"
        ) from None


@dataclass
class TurnMachine:
    """Tracks the current state of one turn and records the path taken."""

    mode: LoopMode
    state: TurnState = TurnState.IDLE
    trail: list[TurnState] = field(default_factory=lambda: [TurnState.IDLE])

    def fire(self, event: TurnEvent) -> TurnState:
        self.state = transition(self.state, event, self.mode)
        self.trail.append(self.state)
        return self.state
