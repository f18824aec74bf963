"""Append-only presence event log."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pydevlife.models.status import EventLogEntry


class EventLog(Protocol):
    """Structural interface for event log backends."""

    async def append(self, entry: EventLogEntry) -> bool:
        """Record *entry* keyed by ``(device_id, event_time)``.

        Returns ``False`` when an entry with the same key already exists;
        existing entries are never overwritten.
        """
        ...


class InMemoryEventLog:
    """Process-local :class:`EventLog`, mostly useful for tests and replay."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, datetime], EventLogEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def append(self, entry: EventLogEntry) -> bool:
        if entry.key in self._entries:
            return False
        self._entries[entry.key] = entry
        return True

    def entries(self, device_id: str) -> list[EventLogEntry]:
        """Entries for one device ordered by event time."""
        found = [entry for (dev, _), entry in self._entries.items() if dev == device_id]
        return sorted(found, key=lambda entry: entry.event_time)
