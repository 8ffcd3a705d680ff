"""Loop modes for the coding agent."""

from dataclasses import dataclass
from enum import Enum


class LoopMode(str, Enum):
    """Available loop shapes."""

    ITERATIVE = "iterative"
    SINGLE_SHOT = "single_shot"


ACTIONS_REFERENCE = """Available actions:
- create_folder: { "action": "create_folder", "path": "path/to/folder" }
- create_file: { "action": "create_file", "path": "path/to/file", "content": "file content" }
- edit_file: { "action": "edit_file", "path": "path/to/file", "content": "new complete content" }
- insert_code: { "action": "insert_code", "content": "code snippet" } (Use this to answer questions or write to active editor)
- done: { "action": "done" } (Use this when the task is complete)"""


@dataclass
class ModeConfig:
    """Configuration for a loop mode."""

    name: LoopMode
    description: str
    system_prompt: str
    temperature: float
    multi_action: bool


MODE_CONFIGS: dict[LoopMode, ModeConfig] = {
    LoopMode.ITERATIVE: ModeConfig(
        name=LoopMode.ITERATIVE,
        description="One action per round, replaying recent results until done",
        system_prompt=(
            "You are an autonomous coding agent.\n"
            "You must decide the next action to perform the user's request.\n"
            f"{ACTIONS_REFERENCE}\n\n"
            "You must return ONLY a strict JSON object for the action. "
            "No markdown. No explanations."
        ),
        temperature=0.2,
        multi_action=False,
    ),
    LoopMode.SINGLE_SHOT: ModeConfig(
        name=LoopMode.SINGLE_SHOT,
        description="One plan with every action, executed in order",
        system_prompt=(
            "You are an autonomous coding agent.\n"
            "Plan every action needed to perform the user's request.\n"
            f"{ACTIONS_REFERENCE}\n\n"
            "Return ONLY a strict JSON object of the form "
            '{ "plan": "one sentence describing the change", "actions": [ ... ] }. '
            "Actions run in the order given, so create folders before the files inside them. "
            "Always write complete file contents. No markdown. No explanations."
        ),
        temperature=0.2,
        multi_action=True,
    ),
}


MODE_CYCLE_ORDER = [
    LoopMode.ITERATIVE,
    LoopMode.SINGLE_SHOT,
]


def get_mode_config(mode: LoopMode) -> ModeConfig:
    """Get configuration for a mode."""
    return MODE_CONFIGS[mode]


def get_next_mode(current: LoopMode) -> LoopMode:
    """Get the next mode in the cycle order."""
    try:
        idx = MODE_CYCLE_ORDER.index(current)
        return MODE_CYCLE_ORDER[(idx + 1) % len(MODE_CYCLE_ORDER)]
    except ValueError:
        return LoopMode.ITERATIVE


def get_mode_by_name(name: str) -> LoopMode | None:
    """Get mode by name (case-insensitive, accepts dashes)."""
    name_lower = name.strip().lower().replace("-", "_")
    for mode in LoopMode:
        if mode.value == name_lower:
            return mode
    return None


def list_modes() -> list[tuple[LoopMode, str]]:
    """List all modes with descriptions."""
    return [(mode, MODE_CONFIGS[mode].description) for mode in MODE_CYCLE_ORDER]
