"""Deterministic connectivity transition policy.

This module contains *no* I/O. The parser and sweeper read rows, ask these
functions what the next row should be, and write it back conditionally.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pydevlife.models.presence import PresenceEvent, PresenceKind
from pydevlife.models.status import DeviceState, DeviceStatus, Outcome


def is_newer(stored: DeviceStatus | None, event_time: datetime) -> bool:
    """An absent row behaves like ``last_event_time = -inf``."""
    if stored is None:
        return True
    return event_time > stored.last_event_time


def apply_event(stored: DeviceStatus | None, event: PresenceEvent) -> tuple[DeviceStatus | None, Outcome]:
    """Compute the row produced by *event*.

    Returns ``(None, Outcome.STALE)`` when the event is not strictly newer
    than the stored row.
    """
    if not is_newer(stored, event.event_time):
        return None, Outcome.STALE

    notified = stored.last_notified_event_time if stored is not None else None

    if event.kind == PresenceKind.CONNECTED:
        return (
            DeviceStatus(
                device_id=event.device_id,
                state=DeviceState.CONNECTED,
                last_event_time=event.event_time,
            ),
            Outcome.RECONNECTED,
        )

    if event.is_planned_disconnect:
        return (
            DeviceStatus(
                device_id=event.device_id,
                state=DeviceState.DISCONNECTED,
                last_event_time=event.event_time,
                last_notified_event_time=notified,
                disconnect_reason=event.disconnect_reason,
            ),
            Outcome.PLANNED_DISCONNECT,
        )

    return (
        DeviceStatus(
            device_id=event.device_id,
            state=DeviceState.PENDING_DISCONNECT,
            last_event_time=event.event_time,
            pending_since=event.event_time,
            last_notified_event_time=notified,
            disconnect_reason=event.disconnect_reason,
        ),
        Outcome.PENDING_DISCONNECT,
    )


def is_debounce_expired(now: datetime, pending_since: datetime | None, window: timedelta) -> bool:
    if pending_since is None:
        return False
    return now - pending_since >= window


def claim(status: DeviceStatus, until: datetime) -> DeviceStatus:
    return status.model_copy(update={"alert_claimed_until": until})


def release(status: DeviceStatus) -> DeviceStatus:
    return status.model_copy(update={"alert_claimed_until": None})


def confirm(status: DeviceStatus) -> DeviceStatus:
    """Mark the pending episode as confirmed and alerted."""
    return status.model_copy(
        update={
            "state": DeviceState.DISCONNECTED,
            "last_notified_event_time": status.last_event_time,
            "alert_claimed_until": None,
        }
    )
