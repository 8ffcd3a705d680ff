"""Plan extraction from raw model output."""

import json
import logging
import re
from typing import Any

from deo.agent.state import ActionKind, ActionSpec, Plan
from deo.errors import PlanParseError

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
_ESCAPE_PATTERN = re.compile(r"\\([\\nrt])")
_ESCAPES = {"\\": "\\", "n": "\n", "r": "\r", "t": "\t"}


def decode_escapes(text: str) -> str:
    """
    Decode literal escape sequences in model-written content.

    Handles ``\\\\``, ``\\n``, ``\\r`` and ``\\t`` in a single left-to-right
    pass, so an escaped backslash is consumed before the character after it
    and is never unescaped twice. Text without escapes is returned unchanged.
    """
    if "\\" not in text:
        return text
    return _ESCAPE_PATTERN.sub(lambda match: _ESCAPES[match.group(1)], text)


def strip_fences(text: str) -> str:
    """Remove markdown code-fence markers around JSON output."""
    return _FENCE_PATTERN.sub("", text).strip()


def parse_plan(raw_text: str) -> Plan:
    """
    Parse raw model output into a Plan.

    Accepted shapes, tried in order:
        1. {"plan": "...", "actions": [ActionSpec, ...]}
        2. [ActionSpec, ...]
        3. ActionSpec

    Args:
        raw_text: Text returned by the model

    Returns:
        Plan with escape-decoded action content

    Raises:
        PlanParseError: if the text is not JSON or not a recognized shape
    """
    data = _load_json(raw_text)

    if isinstance(data, dict) and "actions" in data:
        actions = data["actions"]
        if not isinstance(actions, list):
            raise PlanParseError("'actions' must be an array", raw_text)
        description = data.get("plan")
        if description is not None and not isinstance(description, str):
            raise PlanParseError("'plan' must be a string", raw_text)
        return Plan(
            actions=[_parse_action(item, raw_text) for item in actions],
            description=description.strip() if description else None,
        )

    if isinstance(data, list):
        return Plan(actions=[_parse_action(item, raw_text) for item in data])

    if isinstance(data, dict) and "action" in data:
        return Plan(actions=[_parse_action(data, raw_text)])

    raise PlanParseError("Response is not a plan, an action list or an action", raw_text)


def _load_json(raw_text: str) -> Any:
    text = strip_fences(raw_text or "")
    if not text:
        raise PlanParseError("Empty response", raw_text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Tolerate prose around the JSON payload
    starts = [pos for pos in (text.find("{"), text.find("[")) if pos != -1]
    if starts:
        start = min(starts)
        closer = "}" if text[start] == "{" else "]"
        end = text.rfind(closer)
        if end > start:
            try:
                return json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                pass

    logger.warning(f"Model returned invalid JSON ({len(text)} chars)")
    raise PlanParseError("Invalid JSON", raw_text)


def _parse_action(item: Any, raw_text: str) -> ActionSpec:
    if not isinstance(item, dict):
        raise PlanParseError("Each action must be a JSON object", raw_text)

    kind = ActionKind.from_tag(item.get("action"))
    if kind is ActionKind.UNKNOWN:
        raise PlanParseError(f"Unknown action: {item.get('action')!r}", raw_text)

    if kind is ActionKind.DONE:
        return ActionSpec(kind=kind)

    content = item.get("content")
    if content is not None and not isinstance(content, str):
        raise PlanParseError(f"'content' of {kind.value} must be a string", raw_text)

    if kind is ActionKind.INSERT_CODE:
        if content is None:
            raise PlanParseError("insert_code requires 'content'", raw_text)
        return ActionSpec(kind=kind, content=decode_escapes(content))

    path = item.get("path")
    if not isinstance(path, str) or not path.strip():
        raise PlanParseError(f"{kind.value} requires a non-empty 'path'", raw_text)

    if kind is ActionKind.CREATE_FOLDER:
        return ActionSpec(kind=kind, path=path.strip())

    return ActionSpec(kind=kind, path=path.strip(), content=decode_escapes(content or ""))
