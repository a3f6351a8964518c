"""Conversation memory and context engine for a chat companion."""

__version__ = "0.3.0"
