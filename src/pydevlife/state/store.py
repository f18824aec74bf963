"""Device status store contract and in-memory backend.

The store is the single source of truth for per-device state. Callers never
lock; every write is conditional on the row they read.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from pydevlife.exceptions import StoreError
from pydevlife.models.status import DeviceState, DeviceStatus

_logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StatusPage:
    """One page of a filtered scan.

    ``next_cursor`` is ``None`` once the scan is exhausted.
    """

    items: list[DeviceStatus] = field(default_factory=list)
    next_cursor: str | None = None


class StatusStore(Protocol):
    """Structural interface for status persistence backends."""

    async def get(self, device_id: str) -> DeviceStatus | None:
        ...

    async def replace(self, status: DeviceStatus, *, expected: DeviceStatus | None) -> bool:
        """Write *status* only if the stored row still equals *expected*.

        ``expected=None`` means the row must not exist yet. Returns ``False``
        when the condition fails; nothing is written in that case.
        """
        ...

    async def scan(self, state: DeviceState, *, limit: int, cursor: str | None = None) -> StatusPage:
        ...


async def bounded(aw: Awaitable[T], *, timeout: float | None, what: str, device_id: str = "") -> T:
    """Await a backend call, converting a timeout into :class:`StoreError`."""
    if timeout is None:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except TimeoutError as exc:
        raise StoreError(f"{what} timed out after {timeout}s", device_id=device_id) from exc


class InMemoryStatusStore:
    """Process-local :class:`StatusStore` keyed by ``device_id``.

    Scans walk device ids in sorted order and use the last returned id as
    the cursor.
    """

    def __init__(self) -> None:
        self._rows: dict[str, DeviceStatus] = {}

    def __len__(self) -> int:
        return len(self._rows)

    async def get(self, device_id: str) -> DeviceStatus | None:
        return self._rows.get(device_id)

    async def replace(self, status: DeviceStatus, *, expected: DeviceStatus | None) -> bool:
        if expected is not None and expected.device_id != status.device_id:
            raise ValueError("expected row belongs to a different device")
        current = self._rows.get(status.device_id)
        if current != expected:
            _logger.debug("Conditional write rejected device=%s", status.device_id)
            return False
        self._rows[status.device_id] = status
        return True

    async def scan(self, state: DeviceState, *, limit: int, cursor: str | None = None) -> StatusPage:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        items: list[DeviceStatus] = []
        for device_id in sorted(self._rows):
            if cursor is not None and device_id <= cursor:
                continue
            row = self._rows[device_id]
            if row.state != state:
                continue
            if len(items) == limit:
                return StatusPage(items=items, next_cursor=items[-1].device_id)
            items.append(row)
        return StatusPage(items=items, next_cursor=None)
