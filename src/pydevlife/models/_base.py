"""Base model and timestamp coercion for presence payloads.

Every inbound payload model inherits from :class:`PayloadModel` which
provides:

* ``populate_by_name`` so both wire aliases and snake_case names validate.
* A ``model_validator(mode="before")`` that drops empty-string values so
  the field default is used.
* A ``raw`` dict that captures the original payload.

:data:`EventTimestamp` accepts the timestamp shapes seen in the wild
(epoch seconds, epoch milliseconds, ISO-8601 strings, datetimes) and
always yields a timezone-aware UTC datetime.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _from_epoch(value: float) -> datetime:
    if math.isnan(value) or math.isinf(value) or value <= 0:
        raise ValueError(f"timestamp must be a positive epoch value, got {value!r}")
    if value >= _MS_THRESHOLD:
        value /= 1000.0
    return datetime.fromtimestamp(value, tz=UTC)


def parse_event_timestamp(value: Any) -> datetime | None:
    """Convert an epoch (seconds **or** milliseconds) or ISO string to a UTC datetime.

    Returns ``None`` for ``None``. Raises :class:`ValueError` for anything
    that is not a well-formed, positive timestamp.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError("timestamp must not be a boolean")
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("timestamp must be non-empty")
        number: float | None
        try:
            number = float(text)
        except ValueError:
            number = None
        if number is not None:
            return _from_epoch(number)
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError as exc:
            raise ValueError(f"unrecognised timestamp {value!r}") from exc
    raise ValueError(f"unsupported timestamp type {type(value).__name__}")


EventTimestamp = Annotated[datetime, BeforeValidator(parse_event_timestamp)]
"""Annotated type that coerces epoch numbers/ISO strings to UTC datetimes."""


class PayloadModel(BaseModel):
    """Base for inbound payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop empty-string values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned = {
            key: value
            for key, value in original.items()
            if not (isinstance(value, str) and not value.strip() and key != "raw")
        }
        # Only auto-stash raw when the caller did not pass one explicitly.
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
