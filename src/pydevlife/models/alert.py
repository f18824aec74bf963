"""Outbound alert message."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class AlertMessage(BaseModel):
    """Notification for one confirmed disconnection episode.

    Serialized with camelCase keys (``deviceId``, ``disconnectedAt``, ...)
    for channels that publish JSON.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    device_id: str
    disconnected_at: datetime
    reason: str
    episode_time: datetime
    topic: str = ""
    sent_at: datetime

    @property
    def subject(self) -> str:
        return f"Device {self.device_id} disconnected"

    @property
    def text(self) -> str:
        return (
            f"Device {self.device_id} has been disconnected since "
            f"{self.disconnected_at.isoformat()} ({self.reason})."
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
