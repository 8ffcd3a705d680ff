"""Prompt context: workspace snapshots and conversation memory."""

from deo.context.memory import NO_CONTEXT, MemorySummarizer
from deo.context.workspace import WorkspaceContextBuilder, WorkspaceSnapshot

__all__ = [
    "NO_CONTEXT",
    "MemorySummarizer",
    "WorkspaceContextBuilder",
    "WorkspaceSnapshot",
]
