"""Persistent Claude Code runners, one per conversation channel."""

__version__ = "0.1.0"
