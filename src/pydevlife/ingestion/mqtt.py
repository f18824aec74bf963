"""MQTT ingestion helpers.

This module translates decoded MQTT presence messages into validated
presence events.
"""

from __future__ import annotations

from typing import Any

from pydevlife._mqtt import PresenceMessage
from pydevlife.ingestion.parser import parse_presence_event
from pydevlife.models.presence import PresenceEvent

_DEVICE_ID_KEYS = ("deviceId", "device_id", "clientId")
_KIND_KEYS = ("kind", "eventType", "status")


def build_event_from_message(message: PresenceMessage) -> PresenceEvent:
    """Build a presence event, filling identity and kind from the topic when the payload lacks them.

    Raises :class:`~pydevlife.exceptions.MalformedEventError` when the
    result does not validate.
    """
    payload: dict[str, Any] = dict(message.payload)
    if message.client_id and not any(payload.get(key) for key in _DEVICE_ID_KEYS):
        payload["clientId"] = message.client_id
    if message.event_type and not any(payload.get(key) for key in _KIND_KEYS):
        payload["eventType"] = message.event_type
    return parse_presence_event(payload)
