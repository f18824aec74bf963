"""Alert dispatcher and built-in notification channels."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from pydevlife.models.alert import AlertMessage

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NotificationChannel(Protocol):
    """Structural interface for outbound channels (webhook, email, SMS, ...).

    ``publish`` raises on failure; returning normally means the message was
    accepted by the channel.
    """

    async def publish(self, message: AlertMessage) -> None:
        ...


class LogChannel:
    """Channel that only reports alerts through :mod:`logging`."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("pydevlife.alerts")

    async def publish(self, message: AlertMessage) -> None:
        self._logger.warning("%s: %s", message.subject, message.text)


class AlertDispatcher:
    """Stateless wrapper that turns a confirmed episode into one channel publish.

    Deduplication is the sweeper's job: it only commits the episode as
    notified after :meth:`notify` reports success.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        *,
        topic: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._channel = channel
        self._topic = topic
        self._clock = clock

    async def notify(
        self,
        device_id: str,
        reason: str,
        episode_time: datetime,
        *,
        disconnected_at: datetime | None = None,
    ) -> bool:
        """Publish an alert for one episode. Returns ``False`` on channel failure."""
        message = AlertMessage(
            device_id=device_id,
            disconnected_at=disconnected_at or episode_time,
            reason=reason,
            episode_time=episode_time,
            topic=self._topic,
            sent_at=self._clock(),
        )
        try:
            await self._channel.publish(message)
        except Exception:
            _logger.warning(
                "Alert dispatch failed device=%s episode=%s",
                device_id,
                episode_time.isoformat(),
                exc_info=True,
            )
            return False
        _logger.info("Alert dispatched device=%s episode=%s reason=%s", device_id, episode_time.isoformat(), reason)
        return True
