"""Typed models for presence events, device state and alerts."""

from pydevlife.models.alert import AlertMessage
from pydevlife.models.presence import PresenceEvent, PresenceKind
from pydevlife.models.status import DeviceState, DeviceStatus, EventLogEntry, Outcome

__all__ = [
    "AlertMessage",
    "DeviceState",
    "DeviceStatus",
    "EventLogEntry",
    "Outcome",
    "PresenceEvent",
    "PresenceKind",
]
