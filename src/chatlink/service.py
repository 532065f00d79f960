"""Channel hub: single entrypoint for dashboard commands and reads."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from chatlink.channels.base import Channel, ChannelMetrics, ChannelType, Validator
from chatlink.channels.orchestrator import ConnectionOrchestrator
from chatlink.channels.probe import ConnectionTestRunner
from chatlink.channels.registry import ChannelRegistry, default_registry
from chatlink.channels.store import ChannelListener, ChannelStore
from chatlink.channels.validators import build_validators
from chatlink.config import ChatlinkConfig
from chatlink.embed import ChatbotConfigProvider, IntegrationCodeGenerator, SettingsBrandingProvider
from chatlink.hooks import ChannelChangeRouter
from chatlink.metrics import ChannelSummary, summarize
from chatlink.notifications import LogNotificationSink, NotificationSink

logger = structlog.get_logger()


class ChannelHub:
    """Wires registry, store, orchestrator, test runner and code generator."""

    def __init__(
        self,
        *,
        store: ChannelStore,
        orchestrator: ConnectionOrchestrator,
        test_runner: ConnectionTestRunner,
        code_generator: IntegrationCodeGenerator,
        branding: ChatbotConfigProvider,
        change_router: ChannelChangeRouter | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.test_runner = test_runner
        self.code_generator = code_generator
        self.branding = branding
        self.change_router = change_router
        if change_router is not None and change_router.targets:
            store.add_listener(change_router)

    @classmethod
    def from_config(
        cls,
        config: ChatlinkConfig,
        *,
        registry: ChannelRegistry = default_registry,
        validators: Mapping[ChannelType, Validator] | None = None,
        probes: Mapping[ChannelType, Validator] | None = None,
        notifier: NotificationSink | None = None,
        branding: ChatbotConfigProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ChannelHub:
        store = ChannelStore(registry, webhook_base_url=config.public_base_url or None)
        validators = validators or build_validators(config.validation, transport=transport)
        notifier = notifier or LogNotificationSink()
        return cls(
            store=store,
            orchestrator=ConnectionOrchestrator(
                store,
                validators,
                notifier=notifier,
                validation_timeout_s=config.validation.validation_timeout_s,
            ),
            test_runner=ConnectionTestRunner(
                store,
                probes or validators,
                notifier=notifier,
                test_timeout_s=config.validation.test_timeout_s,
            ),
            code_generator=IntegrationCodeGenerator(registry, config.embed),
            branding=branding or SettingsBrandingProvider(config),
            change_router=ChannelChangeRouter(
                config.hooks.channel_changed_targets,
                webhook_timeout_s=config.hooks.webhook_timeout_s,
                transport=transport,
            ),
        )

    @property
    def registry(self) -> ChannelRegistry:
        return self.store.registry

    def list_channels(self, chatbot_id: str) -> list[Channel]:
        """Read model for the dashboard; initializes the chatbot on first access."""
        return self.store.initialize(chatbot_id)

    def summary(self, chatbot_id: str) -> ChannelSummary:
        return summarize(self.list_channels(chatbot_id))

    async def connect(self, chatbot_id: str, channel_type: ChannelType | str) -> Channel:
        self.store.initialize(chatbot_id)
        return await self.orchestrator.connect(chatbot_id, channel_type)

    async def disconnect(self, chatbot_id: str, channel_type: ChannelType | str) -> Channel:
        self.store.initialize(chatbot_id)
        return await self.orchestrator.disconnect(chatbot_id, channel_type)

    async def configure(
        self,
        chatbot_id: str,
        channel_type: ChannelType | str,
        config: Mapping[str, Any],
    ) -> Channel:
        self.store.initialize(chatbot_id)
        return await self.orchestrator.configure(chatbot_id, channel_type, config)

    async def record_metrics(
        self,
        chatbot_id: str,
        channel_type: ChannelType | str,
        metrics: ChannelMetrics,
    ) -> Channel:
        return await self.orchestrator.record_metrics(chatbot_id, channel_type, metrics)

    async def run_test(self, chatbot_id: str, channel_type: ChannelType | str) -> bool:
        self.store.initialize(chatbot_id)
        return await self.test_runner.run_test(chatbot_id, channel_type)

    def generate(self, chatbot_id: str, channel_type: ChannelType | str) -> str:
        self.store.initialize(chatbot_id)
        channel = self.store.get(chatbot_id, channel_type)
        return self.code_generator.generate(channel, self.branding.get_branding(channel.chatbot_id))

    def add_listener(self, listener: ChannelListener) -> None:
        self.store.add_listener(listener)

    def delete_chatbot(self, chatbot_id: str) -> None:
        self.store.drop(chatbot_id)

    async def aclose(self) -> None:
        await self.orchestrator.aclose()
        if self.change_router is not None:
            await self.change_router.drain()
        logger.info("hub.closed")
