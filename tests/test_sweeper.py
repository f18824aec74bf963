from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from pydevlife.dispatch import AlertDispatcher
from pydevlife.exceptions import DispatchError, StoreError
from pydevlife.ingestion.parser import EventParser
from pydevlife.models.alert import AlertMessage
from pydevlife.models.presence import PresenceEvent, PresenceKind
from pydevlife.models.status import DeviceState, DeviceStatus
from pydevlife.state.event_log import InMemoryEventLog
from pydevlife.state.store import InMemoryStatusStore, StatusPage
from pydevlife.sweeper import DisconnectionSweeper

_T0 = datetime(2026, 1, 1, tzinfo=UTC)
_WINDOW = timedelta(seconds=900)


def _t(seconds: float) -> datetime:
    return _T0 + timedelta(seconds=seconds)


def _connect(device_id: str, at: float) -> PresenceEvent:
    return PresenceEvent(device_id=device_id, event_time=_t(at), kind=PresenceKind.CONNECTED)


def _disconnect(device_id: str, at: float, *, planned: bool = False) -> PresenceEvent:
    return PresenceEvent(
        device_id=device_id,
        event_time=_t(at),
        kind=PresenceKind.DISCONNECTED,
        is_planned_disconnect=planned,
    )


@dataclass
class _RecordingChannel:
    messages: list[AlertMessage] = field(default_factory=list)
    failures: int = 0

    async def publish(self, message: AlertMessage) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise DispatchError("channel down", channel="test")
        self.messages.append(message)


@dataclass
class _Harness:
    store: InMemoryStatusStore
    parser: EventParser
    channel: _RecordingChannel
    sweeper: DisconnectionSweeper


def _harness(store: InMemoryStatusStore | None = None, **sweeper_kwargs: object) -> _Harness:
    store = store if store is not None else InMemoryStatusStore()
    channel = _RecordingChannel()
    parser = EventParser(store, InMemoryEventLog())
    sweeper = DisconnectionSweeper(store, AlertDispatcher(channel, topic="alerts"), **sweeper_kwargs)  # type: ignore[arg-type]
    return _Harness(store=store, parser=parser, channel=channel, sweeper=sweeper)


@pytest.mark.asyncio
async def test_reconnect_within_window_suppresses_alert() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-1", 0))
    await h.parser.ingest(_connect("sensor-1", 100))

    fired = await h.sweeper.sweep(_t(901), _WINDOW)

    status = await h.store.get("sensor-1")
    assert fired == 0
    assert h.channel.messages == []
    assert status is not None
    assert status.state == DeviceState.CONNECTED


@pytest.mark.asyncio
async def test_confirmed_disconnect_alerts_exactly_once() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-2", 0))

    first = await h.sweeper.sweep(_t(905), _WINDOW)
    status = await h.store.get("sensor-2")
    second = await h.sweeper.sweep(_t(1800), _WINDOW)

    assert first == 1
    assert second == 0
    assert status is not None
    assert status.state == DeviceState.DISCONNECTED
    assert status.last_notified_event_time == _t(0)
    assert status.alert_claimed_until is None
    assert len(h.channel.messages) == 1
    message = h.channel.messages[0]
    assert message.device_id == "sensor-2"
    assert message.disconnected_at == _t(0)
    assert message.topic == "alerts"


@pytest.mark.asyncio
async def test_planned_disconnect_never_alerts() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-3", 0, planned=True))

    fired = [await h.sweeper.sweep(_t(offset), _WINDOW) for offset in (901, 3600, 86_400)]

    assert fired == [0, 0, 0]
    assert h.channel.messages == []


@pytest.mark.asyncio
async def test_window_boundary_is_inclusive() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-1", 0))

    assert await h.sweeper.sweep(_t(899), _WINDOW) == 0
    assert await h.sweeper.sweep(_t(900), _WINDOW) == 1


@pytest.mark.asyncio
async def test_naive_sweep_time_is_treated_as_utc() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-1", 0))

    report = await h.sweeper.run(datetime(2026, 1, 1, 0, 15, 5), _WINDOW)

    assert report.alerts_fired == 1
    assert report.failed == 0
    assert report.started_at == _t(905)


@pytest.mark.asyncio
async def test_repeated_unplanned_disconnect_restarts_window() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-1", 0))
    await h.parser.ingest(_disconnect("sensor-1", 600))

    status = await h.store.get("sensor-1")
    assert status is not None
    assert status.pending_since == _t(600)

    assert await h.sweeper.sweep(_t(900), _WINDOW) == 0
    assert await h.sweeper.sweep(_t(1500), _WINDOW) == 1
    assert [m.episode_time for m in h.channel.messages] == [_t(600)]


@pytest.mark.asyncio
async def test_new_episode_after_reconnect_alerts_again() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-1", 0))
    await h.sweeper.sweep(_t(900), _WINDOW)
    await h.parser.ingest(_connect("sensor-1", 1000))
    await h.parser.ingest(_disconnect("sensor-1", 2000))

    fired = await h.sweeper.sweep(_t(2900), _WINDOW)

    assert fired == 1
    assert [m.episode_time for m in h.channel.messages] == [_t(0), _t(2000)]


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_device_pending_for_next_sweep() -> None:
    h = _harness()
    h.channel.failures = 1
    await h.parser.ingest(_disconnect("sensor-1", 0))

    report = await h.sweeper.run(_t(900), _WINDOW)
    status = await h.store.get("sensor-1")

    assert report.alerts_fired == 0
    assert report.failed == 1
    assert status is not None
    assert status.state == DeviceState.PENDING_DISCONNECT
    assert status.pending_since == _t(0)
    assert status.alert_claimed_until is None

    assert await h.sweeper.sweep(_t(960), _WINDOW) == 1
    assert len(h.channel.messages) == 1


@pytest.mark.asyncio
async def test_already_notified_episode_is_skipped() -> None:
    store = InMemoryStatusStore()
    # Pending row whose episode was already alerted (e.g. the confirm write was lost).
    row = DeviceStatus(
        device_id="sensor-1",
        state=DeviceState.PENDING_DISCONNECT,
        last_event_time=_t(0),
        pending_since=_t(0),
        last_notified_event_time=_t(0),
    )
    await store.replace(row, expected=None)
    h = _harness(store)

    report = await h.sweeper.run(_t(1000), _WINDOW)

    assert report.alerts_fired == 0
    assert report.skipped == 1
    assert h.channel.messages == []


@pytest.mark.asyncio
async def test_expired_claim_does_not_block_alert() -> None:
    store = InMemoryStatusStore()
    row = DeviceStatus(
        device_id="sensor-1",
        state=DeviceState.PENDING_DISCONNECT,
        last_event_time=_t(0),
        pending_since=_t(0),
        alert_claimed_until=_t(950),
    )
    await store.replace(row, expected=None)
    h = _harness(store)

    assert await h.sweeper.sweep(_t(920), _WINDOW) == 0
    assert await h.sweeper.sweep(_t(960), _WINDOW) == 1


class _ReconnectOnReadStore(InMemoryStatusStore):
    """Applies a reconnect between the scan and the sweeper's re-read."""

    def __init__(self) -> None:
        super().__init__()
        self.reconnect: DeviceStatus | None = None

    async def get(self, device_id: str) -> DeviceStatus | None:
        if self.reconnect is not None and self.reconnect.device_id == device_id:
            self._rows[device_id] = self.reconnect  # noqa: SLF001
            self.reconnect = None
        return await super().get(device_id)


@pytest.mark.asyncio
async def test_reconnect_during_scan_is_detected_by_reread() -> None:
    store = _ReconnectOnReadStore()
    h = _harness(store)
    await h.parser.ingest(_disconnect("sensor-1", 0))
    store.reconnect = DeviceStatus(device_id="sensor-1", state=DeviceState.CONNECTED, last_event_time=_t(850))

    report = await h.sweeper.run(_t(901), _WINDOW)

    assert report.expired == 1
    assert report.alerts_fired == 0
    assert report.skipped == 1
    assert h.channel.messages == []


@pytest.mark.asyncio
async def test_reconnect_while_alert_in_flight_keeps_reconnected_state() -> None:
    h = _harness()
    await h.parser.ingest(_disconnect("sensor-1", 0))

    class _ReconnectingChannel:
        async def publish(self, message: AlertMessage) -> None:
            await h.parser.ingest(_connect("sensor-1", 905))

    sweeper = DisconnectionSweeper(h.store, AlertDispatcher(_ReconnectingChannel()))

    fired = await sweeper.sweep(_t(910), _WINDOW)

    status = await h.store.get("sensor-1")
    assert fired == 1
    assert status is not None
    assert status.state == DeviceState.CONNECTED
    assert status.last_notified_event_time is None


@pytest.mark.asyncio
async def test_racing_sweepers_dispatch_once_while_claim_is_held() -> None:
    store = InMemoryStatusStore()
    parser = EventParser(store, InMemoryEventLog())
    await parser.ingest(_disconnect("sensor-1", 0))

    release = asyncio.Event()
    published: list[AlertMessage] = []

    class _SlowChannel:
        async def publish(self, message: AlertMessage) -> None:
            await release.wait()
            published.append(message)

    first = DisconnectionSweeper(store, AlertDispatcher(_SlowChannel()))
    second = DisconnectionSweeper(store, AlertDispatcher(_SlowChannel()))

    first_task = asyncio.create_task(first.sweep(_t(900), _WINDOW))
    await asyncio.sleep(0.01)
    second_fired = await second.sweep(_t(901), _WINDOW)
    release.set()
    first_fired = await first_task

    assert (first_fired, second_fired) == (1, 0)
    assert len(published) == 1


class _InterleavingStore(InMemoryStatusStore):
    """Yields to the loop on every call so concurrent sweeps interleave their reads."""

    async def get(self, device_id: str) -> DeviceStatus | None:
        await asyncio.sleep(0)
        return await super().get(device_id)

    async def replace(self, status: DeviceStatus, *, expected: DeviceStatus | None) -> bool:
        await asyncio.sleep(0)
        return await super().replace(status, expected=expected)

    async def scan(self, state: DeviceState, *, limit: int, cursor: str | None = None) -> StatusPage:
        await asyncio.sleep(0)
        return await super().scan(state, limit=limit, cursor=cursor)


@pytest.mark.asyncio
async def test_racing_sweepers_with_interleaved_reads_never_double_dispatch() -> None:
    store = _InterleavingStore()
    parser = EventParser(store, InMemoryEventLog())
    for index in range(5):
        await parser.ingest(_disconnect(f"sensor-{index}", 0))

    channel = _RecordingChannel()
    sweepers = [DisconnectionSweeper(store, AlertDispatcher(channel)) for _ in range(3)]

    fired = await asyncio.gather(*(s.sweep(_t(900), _WINDOW) for s in sweepers))

    assert sum(fired) == 5
    assert sorted(m.device_id for m in channel.messages) == [f"sensor-{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_overlapping_sweep_on_same_instance_is_skipped() -> None:
    store = InMemoryStatusStore()
    parser = EventParser(store, InMemoryEventLog())
    await parser.ingest(_disconnect("sensor-1", 0))

    release = asyncio.Event()

    class _SlowChannel:
        async def publish(self, message: AlertMessage) -> None:
            await release.wait()

    sweeper = DisconnectionSweeper(store, AlertDispatcher(_SlowChannel()))
    running = asyncio.create_task(sweeper.run(_t(900), _WINDOW))
    await asyncio.sleep(0.01)

    assert sweeper.is_running
    overlapped = await sweeper.run(_t(960), _WINDOW)
    release.set()
    report = await running

    assert overlapped.overlapped is True
    assert overlapped.alerts_fired == 0
    assert report.alerts_fired == 1


@pytest.mark.asyncio
async def test_bounded_sweeps_resume_from_cursor() -> None:
    h = _harness(page_size=2, max_pages=1)
    for index in range(5):
        await h.parser.ingest(_disconnect(f"sensor-{index}", 0))

    fired = [await h.sweeper.sweep(_t(900), _WINDOW) for _ in range(3)]

    assert fired == [2, 2, 1]
    assert h.sweeper.resume_cursor is None
    assert [m.device_id for m in h.channel.messages] == [f"sensor-{i}" for i in range(5)]


class _BrokenCursorStore(InMemoryStatusStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_on_cursor = True

    async def scan(self, state: DeviceState, *, limit: int, cursor: str | None = None) -> StatusPage:
        if cursor is not None and self.fail_on_cursor:
            raise StoreError("cursor expired")
        return await super().scan(state, limit=limit, cursor=cursor)


@pytest.mark.asyncio
async def test_cursor_failure_aborts_but_keeps_processed_devices() -> None:
    store = _BrokenCursorStore()
    h = _harness(store, page_size=2)
    for index in range(4):
        await h.parser.ingest(_disconnect(f"sensor-{index}", 0))

    report = await h.sweeper.run(_t(900), _WINDOW)

    assert report.aborted is True
    assert report.alerts_fired == 2
    assert h.sweeper.resume_cursor is None
    confirmed = await h.store.get("sensor-0")
    assert confirmed is not None
    assert confirmed.state == DeviceState.DISCONNECTED

    store.fail_on_cursor = False
    assert await h.sweeper.sweep(_t(960), _WINDOW) == 2


class _FlakyDeviceStore(InMemoryStatusStore):
    async def get(self, device_id: str) -> DeviceStatus | None:
        if device_id == "sensor-1":
            raise StoreError("read failed", device_id=device_id)
        return await super().get(device_id)


@pytest.mark.asyncio
async def test_single_device_failure_does_not_block_others() -> None:
    store = _FlakyDeviceStore()
    channel = _RecordingChannel()
    for index in range(3):
        row = DeviceStatus(
            device_id=f"sensor-{index}",
            state=DeviceState.PENDING_DISCONNECT,
            last_event_time=_t(0),
            pending_since=_t(0),
        )
        assert await store.replace(row, expected=None)

    sweeper = DisconnectionSweeper(store, AlertDispatcher(channel))
    report = await sweeper.run(_t(900), _WINDOW)

    assert report.failed == 1
    assert report.alerts_fired == 2
    assert sorted(m.device_id for m in channel.messages) == ["sensor-0", "sensor-2"]
