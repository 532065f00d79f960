from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import pytest

from chatlink.channels.base import (
    Channel,
    ChannelMetrics,
    ChannelStatus,
    ChannelType,
    ValidationResult,
    Validator,
)
from chatlink.channels.orchestrator import (
    INTERRUPTED_MESSAGE,
    UNEXPECTED_ERROR_MESSAGE,
    ConnectionOrchestrator,
)
from chatlink.channels.store import ChannelStore
from chatlink.errors import (
    InvalidState,
    InvalidTransition,
    NotFoundError,
    NotSupportedError,
    ValidationFailure,
)
from chatlink.notifications import NotificationKind

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class _StubValidator(Validator):
    def __init__(
        self,
        channel_type: ChannelType,
        result: ValidationResult | None = None,
        *,
        gate: asyncio.Event | None = None,
        raises: Exception | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self._channel_type = channel_type
        self.result = result or ValidationResult.ok()
        self.gate = gate
        self.raises = raises
        self.delay_s = delay_s
        self.calls: list[dict[str, Any]] = []

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    async def validate(self, config: Mapping[str, Any]) -> ValidationResult:
        self.calls.append(dict(config))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.raises is not None:
            raise self.raises
        return self.result


class _RecordingSink:
    def __init__(self) -> None:
        self.sent: list[tuple[NotificationKind, str]] = []

    async def notify(self, kind: NotificationKind, message: str) -> None:
        self.sent.append((kind, message))


def _make(*validators: _StubValidator, timeout_s: float = 1.0):
    store = ChannelStore()
    store.initialize("bot-1")
    trace: list[tuple[ChannelType, ChannelStatus, int]] = []

    async def record(channel: Channel) -> None:
        trace.append((channel.type, channel.status, channel.generation))

    store.add_listener(record)
    sink = _RecordingSink()
    orchestrator = ConnectionOrchestrator(
        store,
        {v.channel_type: v for v in validators},
        notifier=sink,
        validation_timeout_s=timeout_s,
        clock=lambda: FIXED_NOW,
    )
    return store, orchestrator, sink, trace


@pytest.mark.asyncio
async def test_connect_returns_pending_then_connects_on_success() -> None:
    store, orchestrator, sink, trace = _make(_StubValidator(ChannelType.TELEGRAM))

    pending = await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    assert pending.status is ChannelStatus.PENDING

    channel = await orchestrator.join("bot-1", ChannelType.TELEGRAM)

    assert channel.status is ChannelStatus.CONNECTED
    assert channel.last_sync_at == FIXED_NOW
    assert channel.error_message is None
    assert channel.metrics == ChannelMetrics.empty()
    assert [status for _, status, _ in trace] == [ChannelStatus.PENDING, ChannelStatus.CONNECTED]
    assert sink.sent == [(NotificationKind.SUCCESS, "Telegram Bot connected successfully.")]


@pytest.mark.asyncio
async def test_whatsapp_validator_failure_sets_error_message() -> None:
    validator = _StubValidator(
        ChannelType.WHATSAPP, ValidationResult.failed("phone not verified")
    )
    store, orchestrator, sink, trace = _make(validator)

    await orchestrator.connect("bot-1", "whatsapp")
    channel = await orchestrator.join("bot-1", "whatsapp")

    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == "phone not verified"
    assert [status for _, status, _ in trace] == [ChannelStatus.PENDING, ChannelStatus.ERROR]
    assert sink.sent == [(NotificationKind.ERROR, "phone not verified")]


@pytest.mark.asyncio
async def test_raised_validation_failure_is_converted_to_error_state() -> None:
    validator = _StubValidator(
        ChannelType.MESSENGER,
        raises=ValidationFailure("Missing required configuration: access_token"),
    )
    _store, orchestrator, _sink, _trace = _make(validator)

    await orchestrator.connect("bot-1", ChannelType.MESSENGER)
    channel = await orchestrator.join("bot-1", ChannelType.MESSENGER)

    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == "Missing required configuration: access_token"


@pytest.mark.asyncio
async def test_unexpected_validator_exception_never_escapes() -> None:
    validator = _StubValidator(ChannelType.SMS, raises=RuntimeError("boom"))
    _store, orchestrator, _sink, _trace = _make(validator)

    await orchestrator.connect("bot-1", ChannelType.SMS)
    channel = await orchestrator.join("bot-1", ChannelType.SMS)

    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == UNEXPECTED_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_validator_timeout_is_treated_as_failure() -> None:
    validator = _StubValidator(ChannelType.INSTAGRAM, delay_s=5.0)
    _store, orchestrator, _sink, _trace = _make(validator, timeout_s=0.05)

    await orchestrator.connect("bot-1", ChannelType.INSTAGRAM)
    channel = await orchestrator.join("bot-1", ChannelType.INSTAGRAM)

    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == "Validation timed out after 0.05s"


@pytest.mark.asyncio
async def test_shopify_connects_deterministically() -> None:
    store, orchestrator, sink, _trace = _make(_StubValidator(ChannelType.SHOPIFY))

    await orchestrator.connect("bot-1", ChannelType.SHOPIFY)
    channel = await orchestrator.join("bot-1", ChannelType.SHOPIFY)

    assert channel.status is ChannelStatus.CONNECTED
    assert "installed successfully" in sink.sent[0][1]


@pytest.mark.asyncio
async def test_disconnect_while_pending_discards_late_result() -> None:
    gate = asyncio.Event()
    validator = _StubValidator(ChannelType.TELEGRAM, gate=gate)
    store, orchestrator, sink, trace = _make(validator)

    await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    await orchestrator.disconnect("bot-1", ChannelType.TELEGRAM)
    gate.set()
    channel = await orchestrator.join("bot-1", ChannelType.TELEGRAM)

    assert channel.status is ChannelStatus.DISCONNECTED
    assert [status for _, status, _ in trace] == [
        ChannelStatus.PENDING,
        ChannelStatus.DISCONNECTED,
    ]
    assert all(kind is not NotificationKind.SUCCESS for kind, _ in sink.sent)


@pytest.mark.asyncio
async def test_disconnect_while_pending_discards_late_failure_too() -> None:
    gate = asyncio.Event()
    validator = _StubValidator(
        ChannelType.TELEGRAM, ValidationResult.failed("bad token"), gate=gate
    )
    store, orchestrator, _sink, _trace = _make(validator)

    await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    await orchestrator.disconnect("bot-1", ChannelType.TELEGRAM)
    gate.set()
    channel = await orchestrator.join("bot-1", ChannelType.TELEGRAM)

    assert channel.status is ChannelStatus.DISCONNECTED
    assert channel.error_message is None


@pytest.mark.asyncio
async def test_stale_attempt_does_not_override_newer_connect() -> None:
    first_gate = asyncio.Event()
    validator = _StubValidator(ChannelType.EMAIL, gate=first_gate)
    store, orchestrator, _sink, trace = _make(validator)

    first = await orchestrator.connect("bot-1", ChannelType.EMAIL)
    await orchestrator.disconnect("bot-1", ChannelType.EMAIL)

    validator.result = ValidationResult.failed("SMTP authentication failed.")
    second = await orchestrator.connect("bot-1", ChannelType.EMAIL)
    assert second.generation > first.generation

    first_gate.set()
    channel = await orchestrator.join("bot-1", ChannelType.EMAIL)
    await asyncio.sleep(0)

    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == "SMTP authentication failed."
    assert store.get("bot-1", ChannelType.EMAIL).generation == second.generation


@pytest.mark.asyncio
async def test_connect_rejected_when_pending_or_connected() -> None:
    gate = asyncio.Event()
    store, orchestrator, _sink, _trace = _make(_StubValidator(ChannelType.TELEGRAM, gate=gate))

    pending = await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    with pytest.raises(InvalidTransition):
        await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    assert store.get("bot-1", ChannelType.TELEGRAM) is pending

    gate.set()
    await orchestrator.join("bot-1", ChannelType.TELEGRAM)
    with pytest.raises(InvalidTransition):
        await orchestrator.connect("bot-1", ChannelType.TELEGRAM)

    website = store.get("bot-1", ChannelType.WEBSITE)
    with pytest.raises(InvalidTransition):
        await orchestrator.connect("bot-1", ChannelType.WEBSITE)
    assert store.get("bot-1", ChannelType.WEBSITE) is website


@pytest.mark.asyncio
async def test_error_channel_can_retry_connect() -> None:
    validator = _StubValidator(ChannelType.WHATSAPP, ValidationResult.failed("phone not verified"))
    _store, orchestrator, _sink, trace = _make(validator)

    await orchestrator.connect("bot-1", ChannelType.WHATSAPP)
    await orchestrator.join("bot-1", ChannelType.WHATSAPP)

    validator.result = ValidationResult.ok()
    pending = await orchestrator.connect("bot-1", ChannelType.WHATSAPP)
    assert pending.error_message is None
    channel = await orchestrator.join("bot-1", ChannelType.WHATSAPP)

    assert channel.status is ChannelStatus.CONNECTED
    assert [status for _, status, _ in trace] == [
        ChannelStatus.PENDING,
        ChannelStatus.ERROR,
        ChannelStatus.PENDING,
        ChannelStatus.CONNECTED,
    ]


@pytest.mark.asyncio
async def test_disconnect_clears_connection_state() -> None:
    store, orchestrator, sink, _trace = _make(_StubValidator(ChannelType.TELEGRAM))
    await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    await orchestrator.join("bot-1", ChannelType.TELEGRAM)
    await orchestrator.record_metrics(
        "bot-1",
        ChannelType.TELEGRAM,
        ChannelMetrics(total_messages=42, response_rate=90.0, active_users=7),
    )

    channel = await orchestrator.disconnect("bot-1", ChannelType.TELEGRAM)

    assert channel.status is ChannelStatus.DISCONNECTED
    assert channel.metrics.total_messages == 0
    assert channel.last_sync_at is None
    assert channel.error_message is None
    assert sink.sent[-1] == (NotificationKind.INFO, "Telegram Bot has been disconnected.")


@pytest.mark.asyncio
async def test_disconnect_from_disconnected_is_invalid() -> None:
    store, orchestrator, _sink, trace = _make()
    before = store.get("bot-1", ChannelType.SMS)

    with pytest.raises(InvalidTransition):
        await orchestrator.disconnect("bot-1", ChannelType.SMS)

    assert store.get("bot-1", ChannelType.SMS) is before
    assert trace == []


@pytest.mark.asyncio
async def test_connect_unknown_chatbot_raises_not_found() -> None:
    _store, orchestrator, _sink, _trace = _make(_StubValidator(ChannelType.TELEGRAM))

    with pytest.raises(NotFoundError):
        await orchestrator.connect("missing-bot", ChannelType.TELEGRAM)


@pytest.mark.asyncio
async def test_concurrent_connects_on_different_channels_run_in_parallel() -> None:
    validators = [
        _StubValidator(t, delay_s=0.05)
        for t in (ChannelType.TELEGRAM, ChannelType.WHATSAPP, ChannelType.MESSENGER)
    ]
    store, orchestrator, _sink, _trace = _make(*validators)

    await asyncio.gather(*(orchestrator.connect("bot-1", v.channel_type) for v in validators))
    results = await asyncio.gather(
        *(orchestrator.join("bot-1", v.channel_type) for v in validators)
    )

    assert all(channel.status is ChannelStatus.CONNECTED for channel in results)


@pytest.mark.asyncio
async def test_configure_is_rejected_while_pending() -> None:
    gate = asyncio.Event()
    store, orchestrator, _sink, _trace = _make(_StubValidator(ChannelType.TELEGRAM, gate=gate))

    updated = await orchestrator.configure("bot-1", ChannelType.TELEGRAM, {"bot_token": "123:abc"})
    assert updated.config == {"bot_token": "123:abc"}
    assert updated.status is ChannelStatus.DISCONNECTED

    await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    with pytest.raises(InvalidTransition):
        await orchestrator.configure("bot-1", ChannelType.TELEGRAM, {"bot_token": "other"})

    gate.set()
    await orchestrator.join("bot-1", ChannelType.TELEGRAM)


@pytest.mark.asyncio
async def test_validator_receives_channel_config() -> None:
    validator = _StubValidator(ChannelType.TELEGRAM)
    _store, orchestrator, _sink, _trace = _make(validator)

    await orchestrator.configure("bot-1", ChannelType.TELEGRAM, {"bot_token": "123:abc"})
    await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    await orchestrator.join("bot-1", ChannelType.TELEGRAM)

    assert validator.calls == [{"bot_token": "123:abc"}]


@pytest.mark.asyncio
async def test_record_metrics_requires_connected_channel() -> None:
    store, orchestrator, _sink, _trace = _make()

    with pytest.raises(InvalidState):
        await orchestrator.record_metrics(
            "bot-1", ChannelType.SMS, ChannelMetrics(total_messages=1)
        )

    channel = await orchestrator.record_metrics(
        "bot-1", ChannelType.WEBSITE, ChannelMetrics(total_messages=12, response_rate=95.0)
    )
    assert channel.metrics.total_messages == 12


@pytest.mark.asyncio
async def test_aclose_moves_in_flight_attempts_to_error() -> None:
    gate = asyncio.Event()
    store, orchestrator, _sink, trace = _make(_StubValidator(ChannelType.TELEGRAM, gate=gate))

    await orchestrator.connect("bot-1", ChannelType.TELEGRAM)
    await asyncio.sleep(0)
    await orchestrator.aclose()

    channel = store.get("bot-1", ChannelType.TELEGRAM)
    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == INTERRUPTED_MESSAGE
    assert [status for _, status, _ in trace] == [ChannelStatus.PENDING, ChannelStatus.ERROR]


@pytest.mark.asyncio
async def test_connect_without_validator_is_not_supported_and_leaves_channel() -> None:
    store, orchestrator, _sink, trace = _make()
    before = store.get("bot-1", ChannelType.SMS)

    with pytest.raises(NotSupportedError):
        await orchestrator.connect("bot-1", ChannelType.SMS)

    assert store.get("bot-1", ChannelType.SMS) is before
    assert trace == []


@pytest.mark.asyncio
async def test_connect_status_check_comes_before_validator_lookup() -> None:
    _store, orchestrator, _sink, _trace = _make()

    with pytest.raises(InvalidTransition):
        await orchestrator.connect("bot-1", ChannelType.WEBSITE)


@pytest.mark.asyncio
async def test_padded_chatbot_id_reaches_the_same_channel() -> None:
    store, orchestrator, _sink, _trace = _make(_StubValidator(ChannelType.TELEGRAM))

    pending = await orchestrator.connect(" bot-1 ", ChannelType.TELEGRAM)
    channel = await orchestrator.join("bot-1 ", ChannelType.TELEGRAM)

    assert pending.chatbot_id == "bot-1"
    assert channel.status is ChannelStatus.CONNECTED
    assert store.get("bot-1", ChannelType.TELEGRAM) is channel


@pytest.mark.asyncio
async def test_aclose_before_attempt_starts_still_leaves_error() -> None:
    store, orchestrator, _sink, _trace = _make(_StubValidator(ChannelType.SMS))

    await orchestrator.connect("bot-1", ChannelType.SMS)
    await orchestrator.aclose()

    channel = store.get("bot-1", ChannelType.SMS)
    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == INTERRUPTED_MESSAGE
