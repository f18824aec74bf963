"""Periodic sweep trigger.

Runs :meth:`DisconnectionSweeper.run` on a fixed cadence inside the event
loop. Ticks that fall inside a long-running sweep are dropped rather than
queued, so sweeps never overlap and never pile up.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pydevlife.sweeper import DisconnectionSweeper, SweepReport

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SweepScheduler:
    """Fixed-interval background task driving a sweeper."""

    def __init__(
        self,
        sweeper: DisconnectionSweeper,
        *,
        interval: float,
        debounce_window: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._sweeper = sweeper
        self._interval = interval
        self._debounce_window = debounce_window
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        """Number of sweeps triggered so far."""
        return self._runs

    def start(self) -> None:
        """Start the background loop on the running event loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="pydevlife-sweep-scheduler")
        _logger.debug("Sweep scheduler started interval=%ss", self._interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.debug("Sweep scheduler stopped after %d runs", self._runs)

    async def run_once(self) -> SweepReport:
        self._runs += 1
        return await self._sweeper.run(self._clock(), self._debounce_window)

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            try:
                await self.run_once()
            except Exception:
                _logger.exception("Scheduled sweep failed")

            next_tick += self._interval
            now = loop.time()
            if next_tick < now:
                skipped = int((now - next_tick) // self._interval) + 1
                _logger.warning("Sweep overran its interval; skipping %d tick(s)", skipped)
                next_tick += skipped * self._interval
            await asyncio.sleep(next_tick - now)
