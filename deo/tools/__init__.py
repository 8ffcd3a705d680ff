"""Tool components."""

from deo.tools.editor import BufferEditTarget, EditTarget, FileEditTarget
from deo.tools.executor import ActionExecutor

__all__ = [
    "ActionExecutor",
    "BufferEditTarget",
    "EditTarget",
    "FileEditTarget",
]
