"""Post-connection health checks."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import replace

import structlog

from chatlink.channels.base import Channel, ChannelStatus, ChannelType, Validator, mark_error
from chatlink.channels.registry import resolve_channel_type
from chatlink.channels.store import ChannelStore
from chatlink.errors import InvalidState, NotFoundError, NotSupportedError, ValidationFailure
from chatlink.logging import channel_log_context
from chatlink.notifications import LogNotificationSink, NotificationKind, NotificationSink

logger = structlog.get_logger()

TEST_FAILED_MESSAGE = "Connection test failed"


class ConnectionTestRunner:
    """Runs a bounded probe against a connected channel and records the outcome.

    Probes share the ``Validator`` interface; by default each channel type is
    probed with its own connect validator.
    """

    __test__ = False

    def __init__(
        self,
        store: ChannelStore,
        probes: Mapping[ChannelType, Validator],
        *,
        notifier: NotificationSink | None = None,
        test_timeout_s: float = 5.0,
    ) -> None:
        self.store = store
        self.probes = dict(probes)
        self.notifier = notifier or LogNotificationSink()
        self.test_timeout_s = test_timeout_s

    async def run_test(self, chatbot_id: str, channel_type: ChannelType | str) -> bool:
        channel_type = resolve_channel_type(channel_type)
        channel = self.store.get(chatbot_id, channel_type)
        if channel.status is not ChannelStatus.CONNECTED:
            raise InvalidState("run a connection test", channel.status.value)
        probe = self.probes.get(channel_type)
        if probe is None:
            raise NotSupportedError(f"No test probe registered for {channel_type.value}")

        with channel_log_context(chatbot_id, channel_type.value):
            passed = await self._probe(probe, channel)
            generation = channel.generation
            applied = False

            def record(current: Channel) -> Channel:
                nonlocal applied
                if current.generation != generation or current.status is not ChannelStatus.CONNECTED:
                    return current
                applied = True
                if passed:
                    return replace(current, last_test_result=True)
                return replace(mark_error(current, TEST_FAILED_MESSAGE), last_test_result=False)

            try:
                await self.store.update(chatbot_id, channel_type, record)
            except NotFoundError:
                logger.info("channels.test.orphaned")
                return passed

            if not applied:
                logger.info("channels.test.discarded", passed=passed, generation=generation)
                return passed

            logger.info("channels.test.completed", passed=passed)
            name = self.store.registry.get_template(channel_type).name
            if passed:
                await self._notify(NotificationKind.SUCCESS, f"{name} connection test passed.")
            else:
                await self._notify(NotificationKind.ERROR, f"{name}: {TEST_FAILED_MESSAGE}")
            return passed

    async def _probe(self, probe: Validator, channel: Channel) -> bool:
        try:
            result = await asyncio.wait_for(
                probe.validate(channel.config),
                timeout=self.test_timeout_s,
            )
        except ValidationFailure as e:
            logger.info("channels.test.rejected", reason=e.reason)
            return False
        except TimeoutError:
            logger.warning("channels.test.timeout", timeout_s=self.test_timeout_s)
            return False
        except Exception as e:
            logger.error("channels.test.crashed", error=str(e), exc_info=True)
            return False
        return result.success

    async def _notify(self, kind: NotificationKind, message: str) -> None:
        try:
            await self.notifier.notify(kind, message)
        except Exception as e:
            logger.warning("channels.notify.failed", kind=kind.value, error=str(e))
