"""Connection lifecycle state machine.

Each channel moves through::

    disconnected/error --connect--> pending --validator--> connected | error
    pending/connected/error --disconnect--> disconnected
    pending --shutdown--> error

A connect attempt is tagged with the channel's generation at the moment it
went pending. Its validator result is applied only if the channel is still
pending on that generation; a disconnect or a newer connect bumps the
generation and the late result is dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import structlog

from chatlink.channels.base import (
    Channel,
    ChannelMetrics,
    ChannelStatus,
    ChannelType,
    ValidationResult,
    Validator,
    mark_connected,
    mark_disconnected,
    mark_error,
    mark_pending,
)
from chatlink.channels.registry import resolve_channel_type
from chatlink.channels.store import ChannelKey, ChannelStore
from chatlink.errors import (
    InvalidState,
    InvalidTransition,
    NotFoundError,
    NotSupportedError,
    ValidationFailure,
    ValidationTimeout,
)
from chatlink.logging import channel_log_context
from chatlink.notifications import LogNotificationSink, NotificationKind, NotificationSink

logger = structlog.get_logger()

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."
INTERRUPTED_MESSAGE = "Connection attempt was interrupted. Please try again."

_CONNECTABLE = frozenset({ChannelStatus.DISCONNECTED, ChannelStatus.ERROR})
_DISCONNECTABLE = frozenset({ChannelStatus.PENDING, ChannelStatus.CONNECTED, ChannelStatus.ERROR})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConnectionOrchestrator:
    """Drives connect/disconnect for every channel through the store."""

    def __init__(
        self,
        store: ChannelStore,
        validators: Mapping[ChannelType, Validator],
        *,
        notifier: NotificationSink | None = None,
        validation_timeout_s: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.validators = dict(validators)
        self.notifier = notifier or LogNotificationSink()
        self.validation_timeout_s = validation_timeout_s
        self._clock = clock
        self._attempts: dict[ChannelKey, asyncio.Task[Channel]] = {}

    async def connect(self, chatbot_id: str, channel_type: ChannelType | str) -> Channel:
        """Move the channel to pending and start validation in the background.

        Returns the pending snapshot; use ``join`` to wait for the outcome.
        """
        channel_type = resolve_channel_type(channel_type)
        validator = self.validators.get(channel_type)

        def begin(channel: Channel) -> Channel:
            if channel.status not in _CONNECTABLE:
                raise InvalidTransition("connect", channel.status.value)
            if validator is None:
                raise NotSupportedError(f"No validator registered for {channel_type.value}")
            return mark_pending(channel)

        pending = await self.store.update(chatbot_id, channel_type, begin)
        key = (pending.chatbot_id, channel_type)
        task = asyncio.create_task(
            self._run_attempt(pending, validator),
            name=f"chatlink-connect-{pending.id}-{pending.generation}",
        )
        self._attempts[key] = task
        task.add_done_callback(lambda done, key=key: self._forget(key, done))

        logger.info(
            "channels.connect.started",
            chatbot_id=pending.chatbot_id,
            channel=channel_type.value,
            generation=pending.generation,
        )
        return pending

    async def disconnect(self, chatbot_id: str, channel_type: ChannelType | str) -> Channel:
        """Disconnect the channel, invalidating any in-flight connect attempt."""
        channel_type = resolve_channel_type(channel_type)

        def end(channel: Channel) -> Channel:
            if channel.status not in _DISCONNECTABLE:
                raise InvalidTransition("disconnect", channel.status.value)
            return mark_disconnected(channel)

        channel = await self.store.update(chatbot_id, channel_type, end)
        logger.info(
            "channels.disconnect.done",
            chatbot_id=chatbot_id,
            channel=channel_type.value,
            generation=channel.generation,
        )
        await self._notify(
            NotificationKind.INFO,
            f"{self._display_name(channel_type)} has been disconnected.",
        )
        return channel

    async def configure(
        self,
        chatbot_id: str,
        channel_type: ChannelType | str,
        config: Mapping[str, Any],
    ) -> Channel:
        """Replace the channel's config. Status is left untouched."""
        channel_type = resolve_channel_type(channel_type)

        def apply(channel: Channel) -> Channel:
            if channel.status is ChannelStatus.PENDING:
                raise InvalidTransition("reconfigure", channel.status.value)
            return replace(channel, config=dict(config))

        channel = await self.store.update(chatbot_id, channel_type, apply)
        logger.info(
            "channels.config.updated",
            chatbot_id=chatbot_id,
            channel=channel_type.value,
            keys=sorted(config),
        )
        return channel

    async def record_metrics(
        self,
        chatbot_id: str,
        channel_type: ChannelType | str,
        metrics: ChannelMetrics,
    ) -> Channel:
        """Store telemetry for a connected channel."""
        channel_type = resolve_channel_type(channel_type)

        def apply(channel: Channel) -> Channel:
            if channel.status is not ChannelStatus.CONNECTED:
                raise InvalidState("record metrics", channel.status.value)
            return replace(channel, metrics=metrics)

        return await self.store.update(chatbot_id, channel_type, apply)

    async def join(self, chatbot_id: str, channel_type: ChannelType | str) -> Channel:
        """Wait for the in-flight connect attempt, if any, and return the channel."""
        channel_type = resolve_channel_type(channel_type)
        channel = self.store.get(chatbot_id, channel_type)
        task = self._attempts.get((channel.chatbot_id, channel_type))
        if task is not None:
            await asyncio.wait([task])
        return self.store.get(chatbot_id, channel_type)

    async def aclose(self) -> None:
        """Cancel outstanding attempts; their channels move to error."""
        attempts = dict(self._attempts)
        for task in attempts.values():
            task.cancel()
        if attempts:
            await asyncio.gather(*attempts.values(), return_exceptions=True)
        # Attempts cancelled before their first step never ran their own cleanup
        for chatbot_id, channel_type in attempts:
            try:
                channel = self.store.get(chatbot_id, channel_type)
            except NotFoundError:
                continue
            if channel.status is ChannelStatus.PENDING:
                await self._abandon(channel)
        self._attempts.clear()

    async def _run_attempt(self, pending: Channel, validator: Validator) -> Channel:
        generation = pending.generation
        with channel_log_context(pending.chatbot_id, pending.type.value):
            try:
                result = await self._validate(pending, validator)
            except asyncio.CancelledError:
                await self._abandon(pending)
                raise

            applied = False

            def finish(current: Channel) -> Channel:
                nonlocal applied
                if current.generation != generation or current.status is not ChannelStatus.PENDING:
                    return current
                applied = True
                if result.success:
                    return mark_connected(current, synced_at=self._clock())
                return mark_error(current, result.reason or UNEXPECTED_ERROR_MESSAGE)

            try:
                channel = await self.store.update(pending.chatbot_id, pending.type, finish)
            except NotFoundError:
                logger.info("channels.validation.orphaned", generation=generation)
                return pending

            if not applied:
                logger.info(
                    "channels.validation.discarded",
                    generation=generation,
                    current_generation=channel.generation,
                    status=channel.status.value,
                )
                return channel

            if result.success:
                logger.info("channels.connect.succeeded", generation=generation)
                await self._notify(NotificationKind.SUCCESS, self._success_message(channel.type))
            else:
                logger.info(
                    "channels.connect.failed",
                    generation=generation,
                    reason=channel.error_message,
                )
                await self._notify(NotificationKind.ERROR, channel.error_message or "")
            return channel

    async def _abandon(self, pending: Channel) -> None:
        def interrupt(current: Channel) -> Channel:
            if current.generation != pending.generation or current.status is not ChannelStatus.PENDING:
                return current
            return mark_error(current, INTERRUPTED_MESSAGE)

        try:
            await self.store.update(pending.chatbot_id, pending.type, interrupt)
        except NotFoundError:
            return
        logger.info("channels.connect.interrupted", generation=pending.generation)

    async def _validate(self, pending: Channel, validator: Validator) -> ValidationResult:
        try:
            return await asyncio.wait_for(
                validator.validate(pending.config),
                timeout=self.validation_timeout_s,
            )
        except ValidationFailure as e:
            return ValidationResult.failed(e.reason)
        except TimeoutError:
            logger.warning("channels.validation.timeout", timeout_s=self.validation_timeout_s)
            return ValidationResult.failed(str(ValidationTimeout(self.validation_timeout_s)))
        except Exception as e:
            logger.error("channels.validation.crashed", error=str(e), exc_info=True)
            return ValidationResult.failed(UNEXPECTED_ERROR_MESSAGE)

    async def _notify(self, kind: NotificationKind, message: str) -> None:
        try:
            await self.notifier.notify(kind, message)
        except Exception as e:
            logger.warning("channels.notify.failed", kind=kind.value, error=str(e))

    def _forget(self, key: ChannelKey, task: asyncio.Task[Channel]) -> None:
        if self._attempts.get(key) is task:
            del self._attempts[key]

    def _display_name(self, channel_type: ChannelType) -> str:
        return self.store.registry.get_template(channel_type).name

    def _success_message(self, channel_type: ChannelType) -> str:
        if channel_type is ChannelType.SHOPIFY:
            return (
                "Shopify chatbot widget has been installed successfully. "
                "The widget is now active on your store."
            )
        return f"{self._display_name(channel_type)} connected successfully."
