"""Disconnection sweeper.

Confirms pending disconnects whose debounce window has elapsed and hands
them to the alert dispatcher. A sweep is safe to run concurrently with
ingestion and with sweepers in other processes:

- every row is re-read right before acting on it,
- the episode is claimed with a conditional write before dispatching,
- the confirmation is committed only after the dispatcher reports success.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydevlife._constants import (
    DEFAULT_ALERT_CLAIM_TTL_SECONDS,
    DEFAULT_ALERT_REASON,
    DEFAULT_SWEEP_PAGE_SIZE,
)
from pydevlife.dispatch import AlertDispatcher
from pydevlife.models._base import ensure_utc
from pydevlife.models.status import DeviceState, DeviceStatus
from pydevlife.state import policy
from pydevlife.state.store import StatusStore, bounded

_logger = logging.getLogger(__name__)


class _RowResult(enum.Enum):
    ALERTED = "alerted"
    CHANGED = "changed"
    NOTIFIED = "notified"
    CLAIMED = "claimed"
    DISPATCH_FAILED = "dispatch_failed"


@dataclass
class SweepReport:
    """Counters for one sweep invocation."""

    started_at: datetime
    pages: int = 0
    scanned: int = 0
    expired: int = 0
    alerts_fired: int = 0
    skipped: int = 0
    failed: int = 0
    completed: bool = False
    aborted: bool = False
    overlapped: bool = False


def alert_reason(status: DeviceStatus) -> str:
    if status.disconnect_reason:
        return f"{DEFAULT_ALERT_REASON} ({status.disconnect_reason})"
    return DEFAULT_ALERT_REASON


class DisconnectionSweeper:
    """Periodic scan over ``PENDING_DISCONNECT`` rows.

    Parameters
    ----------
    store
        Status store shared with the event parser.
    dispatcher
        Alert dispatcher invoked once per confirmed episode.
    page_size
        Rows requested per scan page.
    max_pages
        Pages scanned per invocation. ``None`` scans to the end. When a
        sweep stops early, the next one resumes from the same cursor; the
        cursor lives in memory only, so a restart begins a fresh scan.
    claim_ttl
        How long an episode claim blocks other sweepers.
    store_timeout
        Per-call bound on store access, in seconds.
    """

    def __init__(
        self,
        store: StatusStore,
        dispatcher: AlertDispatcher,
        *,
        page_size: int = DEFAULT_SWEEP_PAGE_SIZE,
        max_pages: int | None = None,
        claim_ttl: timedelta = timedelta(seconds=DEFAULT_ALERT_CLAIM_TTL_SECONDS),
        store_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._page_size = page_size
        self._max_pages = max_pages
        self._claim_ttl = claim_ttl
        self._store_timeout = store_timeout
        self._lock = asyncio.Lock()
        self._resume_cursor: str | None = None
        self._last_report: SweepReport | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def resume_cursor(self) -> str | None:
        """Cursor the next sweep starts from (``None`` means the beginning)."""
        return self._resume_cursor

    @property
    def last_report(self) -> SweepReport | None:
        return self._last_report

    async def sweep(self, now: datetime, debounce_window: timedelta) -> int:
        """Run one sweep and return the number of alerts fired."""
        report = await self.run(now, debounce_window)
        return report.alerts_fired

    async def run(self, now: datetime, debounce_window: timedelta) -> SweepReport:
        """Run one sweep and return its full report.

        A sweep requested while another one is in progress is skipped and
        reported with ``overlapped=True``. A naive *now* is taken as UTC.
        """
        now = ensure_utc(now)
        if self._lock.locked():
            _logger.warning("Sweep requested while a previous sweep is still running; skipping")
            return SweepReport(started_at=now, overlapped=True)

        async with self._lock:
            report = await self._run(now, debounce_window)

        self._last_report = report
        _logger.info(
            "Sweep finished pages=%d scanned=%d expired=%d alerts=%d skipped=%d failed=%d completed=%s aborted=%s",
            report.pages,
            report.scanned,
            report.expired,
            report.alerts_fired,
            report.skipped,
            report.failed,
            report.completed,
            report.aborted,
        )
        return report

    async def _run(self, now: datetime, debounce_window: timedelta) -> SweepReport:
        report = SweepReport(started_at=now)
        cursor = self._resume_cursor

        while True:
            try:
                page = await bounded(
                    self._store.scan(DeviceState.PENDING_DISCONNECT, limit=self._page_size, cursor=cursor),
                    timeout=self._store_timeout,
                    what="pending scan",
                )
            except Exception:
                # Remaining devices are picked up by the next sweep from a fresh scan.
                _logger.warning("Pending scan failed cursor=%s; aborting sweep", cursor, exc_info=True)
                self._resume_cursor = None
                report.aborted = True
                return report

            report.pages += 1
            for row in page.items:
                report.scanned += 1
                if not policy.is_debounce_expired(now, row.pending_since, debounce_window):
                    continue
                report.expired += 1
                try:
                    result = await self._process_row(row, now)
                except Exception:
                    _logger.warning("Sweep failed for device=%s", row.device_id, exc_info=True)
                    report.failed += 1
                    continue

                if result is _RowResult.ALERTED:
                    report.alerts_fired += 1
                elif result is _RowResult.DISPATCH_FAILED:
                    report.failed += 1
                else:
                    report.skipped += 1

            cursor = page.next_cursor
            if cursor is None:
                self._resume_cursor = None
                report.completed = True
                return report
            if self._max_pages is not None and report.pages >= self._max_pages:
                self._resume_cursor = cursor
                return report

    async def _process_row(self, observed: DeviceStatus, now: datetime) -> _RowResult:
        device_id = observed.device_id
        current = await bounded(
            self._store.get(device_id),
            timeout=self._store_timeout,
            what="status re-read",
            device_id=device_id,
        )
        if current is None or not current.is_pending or current.last_event_time != observed.last_event_time:
            _logger.debug("Device changed during sweep device=%s", device_id)
            return _RowResult.CHANGED
        if current.is_episode_notified:
            return _RowResult.NOTIFIED
        if current.claim_active(now):
            _logger.debug("Episode claimed by another sweeper device=%s", device_id)
            return _RowResult.CLAIMED

        claimed = policy.claim(current, now + self._claim_ttl)
        if not await bounded(
            self._store.replace(claimed, expected=current),
            timeout=self._store_timeout,
            what="episode claim",
            device_id=device_id,
        ):
            _logger.debug("Lost episode claim device=%s", device_id)
            return _RowResult.CHANGED

        dispatched = await self._dispatcher.notify(
            device_id,
            alert_reason(current),
            current.last_event_time,
            disconnected_at=current.pending_since,
        )
        if not dispatched:
            await self._release(claimed)
            return _RowResult.DISPATCH_FAILED

        try:
            committed = await bounded(
                self._store.replace(policy.confirm(claimed), expected=claimed),
                timeout=self._store_timeout,
                what="episode confirm",
                device_id=device_id,
            )
        except Exception:
            _logger.error(
                "Alert sent but confirmation could not be stored device=%s episode=%s",
                device_id,
                current.last_event_time.isoformat(),
                exc_info=True,
            )
            return _RowResult.ALERTED

        if not committed:
            _logger.info("Device changed state while its alert was sent device=%s", device_id)
        return _RowResult.ALERTED

    async def _release(self, claimed: DeviceStatus) -> None:
        try:
            await bounded(
                self._store.replace(policy.release(claimed), expected=claimed),
                timeout=self._store_timeout,
                what="claim release",
                device_id=claimed.device_id,
            )
        except Exception:
            _logger.warning(
                "Could not release episode claim device=%s; it will expire",
                claimed.device_id,
                exc_info=True,
            )
