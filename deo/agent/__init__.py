"""Agent components.

The orchestrator lives in deo.agent.loop and is imported from there.
"""

from deo.agent.events import AgentEvent, EventCallback, EventKind
from deo.agent.modes import LoopMode, ModeConfig, get_mode_by_name, get_mode_config, get_next_mode, list_modes
from deo.agent.plan import decode_escapes, parse_plan
from deo.agent.state import ActionKind, ActionSpec, ExecutionOutcome, Plan, TurnEvent, TurnMachine, TurnState, transition

__all__ = [
    "ActionKind",
    "ActionSpec",
    "AgentEvent",
    "EventCallback",
    "EventKind",
    "ExecutionOutcome",
    "LoopMode",
    "ModeConfig",
    "Plan",
    "TurnEvent",
    "TurnMachine",
    "TurnState",
    "decode_escapes",
    "get_mode_by_name",
    "get_mode_config",
    "get_next_mode",
    "list_modes",
    "parse_plan",
    "transition",
]
