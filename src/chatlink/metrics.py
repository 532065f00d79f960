"""Dashboard summary figures across a chatbot's channels."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass

from chatlink.channels.base import Channel, ChannelStatus


@dataclass(frozen=True)
class ChannelSummary:
    connected_count: int = 0
    total_messages: int = 0
    average_response_rate: float = 0.0
    total_active_users: int = 0

    def to_dict(self) -> dict[str, int | float]:
        return asdict(self)


def summarize(channels: Iterable[Channel]) -> ChannelSummary:
    """Reduce the connected subset; an empty subset averages to 0."""
    connected = [c for c in channels if c.status is ChannelStatus.CONNECTED]
    if not connected:
        return ChannelSummary()
    return ChannelSummary(
        connected_count=len(connected),
        total_messages=sum(c.metrics.total_messages for c in connected),
        average_response_rate=sum(c.metrics.response_rate for c in connected) / len(connected),
        total_active_users=sum(c.metrics.active_users for c in connected),
    )
