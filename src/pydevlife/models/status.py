"""Per-device connectivity state and event log records."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

from pydevlife.models._base import ensure_utc
from pydevlife.models.presence import PresenceEvent, PresenceKind


class DeviceState(StrEnum):
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    PENDING_DISCONNECT = "PENDING_DISCONNECT"


class Outcome(StrEnum):
    """Result of ingesting one presence event."""

    STALE = "stale"
    RECONNECTED = "reconnected"
    PLANNED_DISCONNECT = "planned_disconnect"
    PENDING_DISCONNECT = "pending_disconnect"


class DeviceStatus(BaseModel):
    """Current state row for one device.

    ``last_event_time`` only ever moves forward. While the device is
    ``PENDING_DISCONNECT`` it also identifies the disconnection episode;
    ``last_notified_event_time`` equals it once that episode has been
    alerted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    device_id: str
    state: DeviceState
    last_event_time: datetime
    pending_since: datetime | None = None
    last_notified_event_time: datetime | None = None
    disconnect_reason: str | None = None
    alert_claimed_until: datetime | None = None

    @field_validator("last_event_time", "pending_since", "last_notified_event_time", "alert_claimed_until")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return value
        return ensure_utc(value)

    @property
    def is_pending(self) -> bool:
        return self.state == DeviceState.PENDING_DISCONNECT

    @property
    def episode(self) -> datetime | None:
        """Identity of the open disconnection episode, if any."""
        return self.last_event_time if self.is_pending else None

    @property
    def is_episode_notified(self) -> bool:
        return self.last_notified_event_time is not None and self.last_notified_event_time == self.last_event_time

    def claim_active(self, now: datetime) -> bool:
        """Whether another sweeper currently holds the alert claim for this episode."""
        return self.alert_claimed_until is not None and now < self.alert_claimed_until


class EventLogEntry(BaseModel):
    """Append-only audit record of an accepted presence event."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    device_id: str
    event_time: datetime
    kind: PresenceKind
    is_planned_disconnect: bool = False
    disconnect_reason: str | None = None
    recorded_at: datetime

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.device_id, self.event_time)

    @classmethod
    def from_event(cls, event: PresenceEvent, *, recorded_at: datetime) -> EventLogEntry:
        return cls(
            device_id=event.device_id,
            event_time=event.event_time,
            kind=event.kind,
            is_planned_disconnect=event.is_planned_disconnect,
            disconnect_reason=event.disconnect_reason,
            recorded_at=recorded_at,
        )
