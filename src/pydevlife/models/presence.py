"""Inbound presence event model."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from pydevlife._constants import PLANNED_DISCONNECT_REASONS
from pydevlife.models._base import EventTimestamp, PayloadModel


class PresenceKind(StrEnum):
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


class PresenceEvent(PayloadModel):
    """A single connect/disconnect notification for one device.

    Validates both the raw AWS IoT lifecycle payload (``clientId``,
    ``timestamp``, ``eventType``, ``clientInitiatedDisconnect``) and the
    topic-rule projection of it (``deviceId``, ``time``, ``status``,
    ``isNormalDisconnect``).
    """

    device_id: str = Field(
        ...,
        validation_alias=AliasChoices("deviceId", "device_id", "clientId"),
    )
    """Device identifier (MQTT client id)."""

    event_time: EventTimestamp = Field(
        ...,
        validation_alias=AliasChoices("eventTime", "event_time", "timestamp", "time"),
    )
    """When the broker observed the event (UTC)."""

    kind: PresenceKind = Field(..., validation_alias=AliasChoices("kind", "eventType", "status"))

    is_planned_disconnect: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "isPlannedDisconnect",
            "is_planned_disconnect",
            "clientInitiatedDisconnect",
            "isNormalDisconnect",
        ),
    )
    """Whether the client closed the connection itself. Only meaningful for disconnects."""

    disconnect_reason: str | None = Field(
        default=None,
        validation_alias=AliasChoices("disconnectReason", "disconnect_reason"),
    )
    """Broker-reported reason, e.g. ``CONNECTION_LOST`` or ``MQTT_KEEP_ALIVE_TIMEOUT``."""

    @field_validator("device_id")
    @classmethod
    def _normalize_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("device_id must be non-empty")
        return device_id

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def _normalize_planned(self) -> PresenceEvent:
        if self.kind == PresenceKind.CONNECTED:
            object.__setattr__(self, "is_planned_disconnect", False)
            object.__setattr__(self, "disconnect_reason", None)
        elif (
            "is_planned_disconnect" not in self.model_fields_set
            and self.disconnect_reason in PLANNED_DISCONNECT_REASONS
        ):
            # Reason only decides when no planned flag was sent.
            object.__setattr__(self, "is_planned_disconnect", True)
        return self

    @property
    def is_unplanned_disconnect(self) -> bool:
        return self.kind == PresenceKind.DISCONNECTED and not self.is_planned_disconnect
