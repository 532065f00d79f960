"""Chatlink exception hierarchy."""

from __future__ import annotations


class ChatlinkError(Exception):
    """Base class for all orchestrator errors."""


class NotFoundError(ChatlinkError):
    """Unknown channel type, or channels not initialized for a chatbot."""


class NotSupportedError(ChatlinkError):
    """Operation is not defined for this channel type."""


class InvalidTransition(ChatlinkError):
    """Command issued from a status that does not permit it."""

    def __init__(self, command: str, status: str) -> None:
        super().__init__(f"Cannot {command} a channel that is {status}")
        self.command = command
        self.status = status


class InvalidState(ChatlinkError):
    """Operation requires the channel to be connected."""

    def __init__(self, operation: str, status: str) -> None:
        super().__init__(f"Cannot {operation} while channel is {status}")
        self.operation = operation
        self.status = status


class ValidationFailure(ChatlinkError):
    """A validator rejected the connect attempt."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationTimeout(ChatlinkError):
    """A validator or test probe exceeded its time bound."""

    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Validation timed out after {timeout_s:g}s")
        self.timeout_s = timeout_s
