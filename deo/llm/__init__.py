"""LLM integration components."""

from deo.llm.local import GenerationResult, LocalLLM

__all__ = [
    "GenerationResult",
    "LocalLLM",
]
