"""Chatlink: multi-channel integration connection orchestrator."""

__version__ = "1.0.0"
