"""Custom exception hierarchy for pydevlife."""

from __future__ import annotations


class DevLifeError(Exception):
    """Base exception for all pydevlife errors."""


class ConfigError(DevLifeError):
    """Invalid or missing configuration."""


class MalformedEventError(DevLifeError):
    """Presence event could not be parsed or failed validation.

    Malformed events are dropped and never retried: redelivering the same
    payload cannot fix it.
    """

    def __init__(self, message: str, *, payload: object = None) -> None:
        self.payload = payload
        super().__init__(message)


class StoreError(DevLifeError):
    """Status store or event log backend failure (unavailable, timeout, bad cursor)."""

    def __init__(self, message: str, *, device_id: str = "") -> None:
        self.device_id = device_id
        super().__init__(message)


class ConcurrentUpdateError(StoreError):
    """A conditional write kept losing to concurrent writers.

    Raised by the event parser after exhausting its re-read attempts; the
    transport's normal redelivery is expected to retry the event.
    """


class DispatchError(DevLifeError):
    """Notification channel failed to publish an alert."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        channel: str = "",
    ) -> None:
        self.status_code = status_code
        self.channel = channel
        super().__init__(message)
