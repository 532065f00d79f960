"""Core channel abstractions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


# Channel config keys that carry credentials; masked in every serialized form.
SECRET_KEYS = frozenset(
    {"access_token", "api_key", "auth_token", "bot_token", "smtp_password", "app_secret"}
)


class ChannelType(str, Enum):
    WEBSITE = "website"
    WHATSAPP = "whatsapp"
    MESSENGER = "messenger"
    TELEGRAM = "telegram"
    INSTAGRAM = "instagram"
    SHOPIFY = "shopify"
    EMAIL = "email"
    SMS = "sms"


class ChannelStatus(str, Enum):
    DISCONNECTED = "disconnected"
    PENDING = "pending"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ChannelMetrics:
    """Traffic figures for a connected channel."""

    total_messages: int = 0
    response_rate: float = 0.0
    average_response_time_seconds: float = 0.0
    active_users: int = 0
    conversion_rate: float = 0.0
    last_message_at: datetime | None = None

    def __post_init__(self) -> None:
        for name in ("response_rate", "conversion_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if self.total_messages < 0 or self.active_users < 0:
            raise ValueError("message and user counts cannot be negative")

    @classmethod
    def empty(cls) -> ChannelMetrics:
        return cls()


@dataclass(frozen=True)
class Channel:
    """Snapshot of one chatbot's connection slot for a channel type.

    Snapshots are immutable; the store commits new ones through
    ``ChannelStore.update``.
    """

    chatbot_id: str
    type: ChannelType
    status: ChannelStatus = ChannelStatus.DISCONNECTED
    config: Mapping[str, Any] = field(default_factory=dict)
    metrics: ChannelMetrics = field(default_factory=ChannelMetrics.empty)
    last_sync_at: datetime | None = None
    error_message: str | None = None
    last_test_result: bool | None = None
    generation: int = 0
    webhook_url: str | None = None

    @property
    def id(self) -> str:
        return f"{self.type.value}_{self.chatbot_id}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "id": self.id,
            "chatbot_id": self.chatbot_id,
            "type": self.type.value,
            "status": self.status.value,
            "config": {
                key: ("***" if key in SECRET_KEYS and value else value)
                for key, value in self.config.items()
            },
            "metrics": {
                "total_messages": self.metrics.total_messages,
                "response_rate": self.metrics.response_rate,
                "average_response_time_seconds": self.metrics.average_response_time_seconds,
                "active_users": self.metrics.active_users,
                "conversion_rate": self.metrics.conversion_rate,
                "last_message_at": _isoformat(self.metrics.last_message_at),
            },
            "last_sync_at": _isoformat(self.last_sync_at),
            "error_message": self.error_message,
            "last_test_result": self.last_test_result,
            "webhook_url": self.webhook_url,
        }


def mark_pending(channel: Channel) -> Channel:
    return replace(
        channel,
        status=ChannelStatus.PENDING,
        generation=channel.generation + 1,
        metrics=ChannelMetrics.empty(),
        error_message=None,
    )


def mark_connected(channel: Channel, *, synced_at: datetime) -> Channel:
    return replace(
        channel,
        status=ChannelStatus.CONNECTED,
        metrics=ChannelMetrics.empty(),
        last_sync_at=synced_at,
        error_message=None,
    )


def mark_error(channel: Channel, reason: str) -> Channel:
    return replace(
        channel,
        status=ChannelStatus.ERROR,
        metrics=ChannelMetrics.empty(),
        error_message=reason.strip() or "Connection failed",
    )


def mark_disconnected(channel: Channel) -> Channel:
    return replace(
        channel,
        status=ChannelStatus.DISCONNECTED,
        generation=channel.generation + 1,
        metrics=ChannelMetrics.empty(),
        last_sync_at=None,
        error_message=None,
        last_test_result=None,
    )


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validator or probe call."""

    success: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str) -> ValidationResult:
        return cls(success=False, reason=reason)


class Validator(ABC):
    """Type-specific connect/verify step.

    Implementations inspect the channel config and either return a
    ``ValidationResult`` or raise ``ValidationFailure``. Callers bound the
    call with a timeout.
    """

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        ...

    @abstractmethod
    async def validate(self, config: Mapping[str, Any]) -> ValidationResult:
        ...


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
