"""High-level async facade wiring parser, sweeper, dispatcher and transports."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydevlife._mqtt import PresenceMessage, PresenceMqttRuntime
from pydevlife._redact import redact_for_log
from pydevlife._transport import WebhookChannel
from pydevlife.config import LifecycleConfig
from pydevlife.dispatch import AlertDispatcher, LogChannel, NotificationChannel
from pydevlife.exceptions import DevLifeError, MalformedEventError
from pydevlife.ingestion.mqtt import build_event_from_message
from pydevlife.ingestion.parser import EventParser, parse_presence_event
from pydevlife.models.presence import PresenceEvent
from pydevlife.models.status import DeviceStatus, Outcome
from pydevlife.scheduler import SweepScheduler
from pydevlife.state.event_log import EventLog, InMemoryEventLog
from pydevlife.state.store import InMemoryStatusStore, StatusStore
from pydevlife.sweeper import DisconnectionSweeper, SweepReport

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LifecycleMonitor:
    """Device connectivity monitor.

    Usage::

        async with LifecycleMonitor(LifecycleConfig.from_env()) as monitor:
            monitor.start_scheduler()
            await monitor.ingest_payload({"clientId": "sensor-1", ...})

    Store, event log and notification channel default to the in-memory
    backends and a webhook (when ``config.webhook_url`` is set) or log
    channel; pass your own to plug in real persistence or delivery.
    """

    def __init__(
        self,
        config: LifecycleConfig | None = None,
        *,
        store: StatusStore | None = None,
        event_log: EventLog | None = None,
        channel: NotificationChannel | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_outcome: Callable[[PresenceEvent, Outcome], None] | None = None,
    ) -> None:
        self._config = config or LifecycleConfig()
        self._clock = clock
        self._store: StatusStore = store if store is not None else InMemoryStatusStore()
        self._event_log: EventLog = event_log if event_log is not None else InMemoryEventLog()
        self._webhook: WebhookChannel | None = None
        if channel is None:
            if self._config.webhook_url:
                self._webhook = WebhookChannel(self._config.webhook_url, timeout=self._config.webhook_timeout)
                channel = self._webhook
            else:
                channel = LogChannel()
        self._on_outcome = on_outcome

        self._parser = EventParser(
            self._store,
            self._event_log,
            clock=clock,
            max_attempts=self._config.ingest_max_attempts,
            store_timeout=self._config.store_timeout,
        )
        self._dispatcher = AlertDispatcher(channel, topic=self._config.notification_topic, clock=clock)
        self._sweeper = DisconnectionSweeper(
            self._store,
            self._dispatcher,
            page_size=self._config.sweep_page_size,
            max_pages=self._config.sweep_max_pages,
            claim_ttl=self._config.claim_ttl,
            store_timeout=self._config.store_timeout,
        )
        self._scheduler = SweepScheduler(
            self._sweeper,
            interval=self._config.sweep_interval,
            debounce_window=self._config.debounce,
            clock=clock,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._mqtt_runtime: PresenceMqttRuntime | None = None
        self._pending: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LifecycleMonitor:
        self._loop = asyncio.get_running_loop()
        if self._config.mqtt_enabled:
            self._start_mqtt()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._stop_mqtt()
        await self._scheduler.stop()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._webhook is not None:
            await self._webhook.close()
        self._loop = None

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> LifecycleConfig:
        return self._config

    @property
    def store(self) -> StatusStore:
        return self._store

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def parser(self) -> EventParser:
        return self._parser

    @property
    def sweeper(self) -> DisconnectionSweeper:
        return self._sweeper

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._dispatcher

    @property
    def scheduler(self) -> SweepScheduler:
        return self._scheduler

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, event: PresenceEvent) -> Outcome:
        outcome = await self._parser.ingest(event)
        if self._on_outcome is not None:
            self._on_outcome(event, outcome)
        return outcome

    async def ingest_payload(self, payload: Mapping[str, Any]) -> Outcome:
        """Validate and ingest a raw presence payload.

        Raises :class:`~pydevlife.exceptions.MalformedEventError` for
        payloads that do not validate.
        """
        try:
            event = parse_presence_event(payload)
        except MalformedEventError:
            _logger.warning("Dropping malformed presence payload: %s", redact_for_log(payload))
            raise
        return await self.ingest(event)

    async def get_status(self, device_id: str) -> DeviceStatus | None:
        return await self._store.get(device_id)

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    async def sweep(self, now: datetime | None = None) -> int:
        """Run one sweep with the configured debounce window."""
        return await self._sweeper.sweep(now or self._clock(), self._config.debounce)

    async def run_sweep(self, now: datetime | None = None) -> SweepReport:
        return await self._sweeper.run(now or self._clock(), self._config.debounce)

    def start_scheduler(self) -> None:
        self._scheduler.start()

    async def stop_scheduler(self) -> None:
        await self._scheduler.stop()

    # ------------------------------------------------------------------
    # MQTT
    # ------------------------------------------------------------------

    def _start_mqtt(self) -> None:
        if self._loop is None:
            raise DevLifeError("Monitor not started. Use 'async with LifecycleMonitor(...) as monitor:'")
        runtime = PresenceMqttRuntime(loop=self._loop, on_message=self._on_presence_message)
        runtime.start(self._config)
        self._mqtt_runtime = runtime

    def _stop_mqtt(self) -> None:
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is not None:
            runtime.stop()

    def _on_presence_message(self, message: PresenceMessage) -> None:
        """Loop-side callback for MQTT messages; schedules ingestion."""
        task = asyncio.get_running_loop().create_task(self._ingest_message(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _ingest_message(self, message: PresenceMessage) -> Outcome | None:
        try:
            event = build_event_from_message(message)
        except MalformedEventError:
            _logger.warning("Dropping malformed presence message topic=%s", message.topic, exc_info=True)
            return None
        try:
            return await self.ingest(event)
        except MalformedEventError:
            return None
        except Exception:
            _logger.exception("Failed to ingest presence event device=%s", event.device_id)
            return None
