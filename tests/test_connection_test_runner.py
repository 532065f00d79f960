from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import pytest

from chatlink.channels.base import ChannelStatus, ChannelType, ValidationResult, Validator
from chatlink.channels.orchestrator import ConnectionOrchestrator
from chatlink.channels.probe import TEST_FAILED_MESSAGE, ConnectionTestRunner
from chatlink.channels.store import ChannelStore
from chatlink.errors import InvalidState, NotSupportedError, ValidationFailure
from chatlink.notifications import NotificationKind


class _Probe(Validator):
    def __init__(
        self,
        channel_type: ChannelType,
        passed: bool = True,
        *,
        gate: asyncio.Event | None = None,
        raises: Exception | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self._channel_type = channel_type
        self.passed = passed
        self.gate = gate
        self.raises = raises
        self.delay_s = delay_s

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    async def validate(self, config: Mapping[str, Any]) -> ValidationResult:
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.raises is not None:
            raise self.raises
        return ValidationResult.ok() if self.passed else ValidationResult.failed("probe failed")


class _RecordingSink:
    def __init__(self) -> None:
        self.sent: list[tuple[NotificationKind, str]] = []

    async def notify(self, kind: NotificationKind, message: str) -> None:
        self.sent.append((kind, message))


def _runner(*probes: _Probe, timeout_s: float = 1.0):
    store = ChannelStore()
    store.initialize("bot-1")
    sink = _RecordingSink()
    runner = ConnectionTestRunner(
        store,
        {p.channel_type: p for p in probes},
        notifier=sink,
        test_timeout_s=timeout_s,
    )
    return store, runner, sink


@pytest.mark.asyncio
async def test_passing_probe_records_success_and_keeps_connected() -> None:
    store, runner, sink = _runner(_Probe(ChannelType.WEBSITE, passed=True))

    assert await runner.run_test("bot-1", ChannelType.WEBSITE) is True

    channel = store.get("bot-1", ChannelType.WEBSITE)
    assert channel.status is ChannelStatus.CONNECTED
    assert channel.last_test_result is True
    assert sink.sent == [(NotificationKind.SUCCESS, "Website Widget connection test passed.")]


@pytest.mark.asyncio
async def test_failing_probe_moves_channel_to_error() -> None:
    store, runner, sink = _runner(_Probe(ChannelType.WEBSITE, passed=False))

    assert await runner.run_test("bot-1", "website") is False

    channel = store.get("bot-1", ChannelType.WEBSITE)
    assert channel.status is ChannelStatus.ERROR
    assert channel.error_message == TEST_FAILED_MESSAGE
    assert channel.last_test_result is False
    assert channel.metrics.total_messages == 0
    assert sink.sent[0][0] is NotificationKind.ERROR


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "probe",
    [
        _Probe(ChannelType.WEBSITE, raises=ValidationFailure("token revoked")),
        _Probe(ChannelType.WEBSITE, raises=RuntimeError("socket closed")),
        _Probe(ChannelType.WEBSITE, delay_s=5.0),
    ],
    ids=["validation-failure", "crash", "timeout"],
)
async def test_probe_errors_count_as_failure(probe: _Probe) -> None:
    store, runner, _sink = _runner(probe, timeout_s=0.05)

    assert await runner.run_test("bot-1", ChannelType.WEBSITE) is False
    assert store.get("bot-1", ChannelType.WEBSITE).status is ChannelStatus.ERROR


@pytest.mark.asyncio
async def test_run_test_requires_connected_channel() -> None:
    store, runner, sink = _runner(_Probe(ChannelType.SMS))
    before = store.get("bot-1", ChannelType.SMS)

    with pytest.raises(InvalidState):
        await runner.run_test("bot-1", ChannelType.SMS)

    assert store.get("bot-1", ChannelType.SMS) is before
    assert sink.sent == []


@pytest.mark.asyncio
async def test_run_test_without_probe_is_not_supported() -> None:
    _store, runner, _sink = _runner()

    with pytest.raises(NotSupportedError):
        await runner.run_test("bot-1", ChannelType.WEBSITE)


@pytest.mark.asyncio
async def test_result_discarded_if_channel_disconnected_mid_test() -> None:
    gate = asyncio.Event()
    store, runner, sink = _runner(_Probe(ChannelType.WEBSITE, passed=False, gate=gate))
    orchestrator = ConnectionOrchestrator(store, {})

    test_task = asyncio.create_task(runner.run_test("bot-1", ChannelType.WEBSITE))
    await asyncio.sleep(0)
    await orchestrator.disconnect("bot-1", ChannelType.WEBSITE)
    gate.set()

    assert await test_task is False
    channel = store.get("bot-1", ChannelType.WEBSITE)
    assert channel.status is ChannelStatus.DISCONNECTED
    assert channel.error_message is None
    assert sink.sent == []


@pytest.mark.asyncio
async def test_concurrent_failing_tests_record_one_error() -> None:
    store, runner, sink = _runner(_Probe(ChannelType.WEBSITE, passed=False, delay_s=0.01))

    results = await asyncio.gather(
        runner.run_test("bot-1", ChannelType.WEBSITE),
        runner.run_test("bot-1", ChannelType.WEBSITE),
    )

    assert results == [False, False]
    assert store.get("bot-1", ChannelType.WEBSITE).status is ChannelStatus.ERROR
    assert len(sink.sent) == 1
