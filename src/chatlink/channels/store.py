"""Per-chatbot channel store with per-channel exclusive updates."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from chatlink.channels.base import Channel, ChannelStatus, ChannelType
from chatlink.channels.registry import ChannelRegistry, default_registry, resolve_channel_type
from chatlink.errors import NotFoundError

logger = structlog.get_logger()

ChannelKey = tuple[str, ChannelType]
ChannelMutator = Callable[[Channel], Channel]
ChannelListener = Callable[[Channel], Awaitable[None]]


class ChannelStore:
    """Holds every chatbot's channel set.

    ``update`` is the only write path. Each ``(chatbot_id, type)`` pair has its
    own lock, so writers to one channel are serialized while different
    channels proceed independently.
    """

    def __init__(
        self,
        registry: ChannelRegistry = default_registry,
        *,
        webhook_base_url: str | None = None,
    ) -> None:
        self.registry = registry
        self.webhook_base_url = (webhook_base_url or "").rstrip("/") or None
        self._channels: dict[ChannelKey, Channel] = {}
        self._locks: dict[ChannelKey, asyncio.Lock] = {}
        self._listeners: list[ChannelListener] = []

    def initialize(self, chatbot_id: str) -> list[Channel]:
        """Create the full channel set for a chatbot. No-op if it exists."""
        chatbot_id = _normalize_chatbot_id(chatbot_id)
        if self.is_initialized(chatbot_id):
            return self.list_channels(chatbot_id)

        for template in self.registry.templates():
            key = (chatbot_id, template.type)
            self._channels[key] = Channel(
                chatbot_id=chatbot_id,
                type=template.type,
                status=(
                    ChannelStatus.CONNECTED
                    if template.type is ChannelType.WEBSITE
                    else ChannelStatus.DISCONNECTED
                ),
                webhook_url=self._webhook_url(chatbot_id, template.type, template.supports_embed),
            )
            self._locks[key] = asyncio.Lock()

        logger.info("channels.store.initialized", chatbot_id=chatbot_id)
        return self.list_channels(chatbot_id)

    def is_initialized(self, chatbot_id: str) -> bool:
        return (_clean(chatbot_id), ChannelType.WEBSITE) in self._channels

    def get(self, chatbot_id: str, channel_type: ChannelType | str) -> Channel:
        return self._channels[self._key(chatbot_id, channel_type)]

    def list_channels(self, chatbot_id: str) -> list[Channel]:
        chatbot_id = _clean(chatbot_id)
        if not self.is_initialized(chatbot_id):
            raise NotFoundError(f"Channels are not initialized for chatbot {chatbot_id!r}")
        return [self._channels[(chatbot_id, t)] for t in self.registry.list_types()]

    async def update(
        self,
        chatbot_id: str,
        channel_type: ChannelType | str,
        mutator: ChannelMutator,
    ) -> Channel:
        """Apply ``mutator`` to the current snapshot under the channel's lock.

        Returning the snapshot unchanged commits nothing and fires no event.
        Exceptions raised by the mutator propagate and leave the channel as is.
        """
        key = self._key(chatbot_id, channel_type)
        async with self._locks[key]:
            current = self._channels[key]
            updated = mutator(current)
            if updated is current:
                return current
            _check_invariants(current, updated)
            self._channels[key] = updated
            await self._emit(updated)
            return updated

    def add_listener(self, listener: ChannelListener) -> None:
        """Register an ``on_channel_changed`` hook."""
        self._listeners.append(listener)

    def drop(self, chatbot_id: str) -> None:
        """Destroy a chatbot's channel set."""
        chatbot_id = _clean(chatbot_id)
        for channel_type in self.registry.list_types():
            self._channels.pop((chatbot_id, channel_type), None)
            self._locks.pop((chatbot_id, channel_type), None)
        logger.info("channels.store.dropped", chatbot_id=chatbot_id)

    async def _emit(self, channel: Channel) -> None:
        for listener in self._listeners:
            try:
                await listener(channel)
            except Exception as e:
                logger.warning(
                    "channels.store.listener_failed",
                    channel_id=channel.id,
                    error=str(e),
                )

    def _key(self, chatbot_id: str, channel_type: ChannelType | str) -> ChannelKey:
        key = (_clean(chatbot_id), resolve_channel_type(channel_type))
        if key not in self._channels:
            raise NotFoundError(f"Channels are not initialized for chatbot {chatbot_id!r}")
        return key

    def _webhook_url(self, chatbot_id: str, channel_type: ChannelType, embedded: bool) -> str | None:
        if embedded or not self.webhook_base_url:
            return None
        return f"{self.webhook_base_url}/webhook/{channel_type.value}/{chatbot_id}"


def _clean(chatbot_id: str) -> str:
    return (chatbot_id or "").strip()


def _normalize_chatbot_id(chatbot_id: str) -> str:
    normalized = _clean(chatbot_id)
    if not normalized:
        raise ValueError("chatbot_id must be a non-empty string")
    return normalized


def _check_invariants(current: Channel, updated: Channel) -> None:
    if (updated.chatbot_id, updated.type) != (current.chatbot_id, current.type):
        raise ValueError("A channel update cannot change its chatbot or type")
    has_error = bool(updated.error_message)
    if has_error != (updated.status is ChannelStatus.ERROR):
        raise ValueError("error_message must be set exactly when status is error")
