"""Deo: a local-model coding agent that edits a sandboxed workspace."""

__version__ = "0.3.0"
