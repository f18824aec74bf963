"""Presence event parser.

Turns validated presence events into status store updates and event log
entries. Ordering and idempotency come from the forward-only
``last_event_time`` guard: every status write is conditional on the row the
parser read, and a lost race simply re-reads and re-evaluates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from pydevlife._constants import DEFAULT_INGEST_MAX_ATTEMPTS
from pydevlife._redact import redact_for_log
from pydevlife.exceptions import ConcurrentUpdateError, MalformedEventError
from pydevlife.models.presence import PresenceEvent
from pydevlife.models.status import EventLogEntry, Outcome
from pydevlife.state.event_log import EventLog
from pydevlife.state.policy import apply_event
from pydevlife.state.store import StatusStore, bounded

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_presence_event(payload: Mapping[str, Any]) -> PresenceEvent:
    """Validate a raw presence payload.

    Raises
    ------
    MalformedEventError
        If the payload is not a mapping or fails validation.
    """
    if not isinstance(payload, Mapping):
        raise MalformedEventError(
            f"presence payload must be an object, got {type(payload).__name__}",
            payload=payload,
        )
    try:
        return PresenceEvent.model_validate(dict(payload))
    except ValidationError as exc:
        raise MalformedEventError(f"invalid presence payload: {exc.error_count()} error(s)", payload=payload) from exc


def _check_event(event: Any) -> PresenceEvent:
    # Events built with model_construct() or by hand skip pydantic validation.
    if not isinstance(event, PresenceEvent):
        raise MalformedEventError(f"expected PresenceEvent, got {type(event).__name__}", payload=event)
    device_id = getattr(event, "device_id", None)
    if not isinstance(device_id, str) or not device_id.strip():
        raise MalformedEventError("device_id must be a non-empty string", payload=event)
    event_time = getattr(event, "event_time", None)
    if not isinstance(event_time, datetime) or event_time.tzinfo is None:
        raise MalformedEventError("event_time must be a timezone-aware datetime", payload=event)
    return event


class EventParser:
    """Apply presence events to the status store and event log."""

    def __init__(
        self,
        store: StatusStore,
        event_log: EventLog,
        *,
        clock: Callable[[], datetime] = _utcnow,
        max_attempts: int = DEFAULT_INGEST_MAX_ATTEMPTS,
        store_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._event_log = event_log
        self._clock = clock
        self._max_attempts = max_attempts
        self._store_timeout = store_timeout

    async def ingest_payload(self, payload: Mapping[str, Any]) -> Outcome:
        """Validate a raw payload, then :meth:`ingest` it."""
        try:
            event = parse_presence_event(payload)
        except MalformedEventError:
            _logger.warning("Dropping malformed presence payload: %s", redact_for_log(payload))
            raise
        return await self.ingest(event)

    async def ingest(self, event: PresenceEvent) -> Outcome:
        """Apply one presence event.

        Returns the resulting :class:`~pydevlife.models.status.Outcome`.
        Store failures propagate so the transport can redeliver the event;
        nothing is written unless the conditional write succeeds.
        """
        try:
            event = _check_event(event)
        except MalformedEventError:
            _logger.warning("Dropping malformed presence event: %r", event)
            raise

        device_id = event.device_id
        outcome = Outcome.STALE
        for attempt in range(1, self._max_attempts + 1):
            stored = await bounded(
                self._store.get(device_id),
                timeout=self._store_timeout,
                what="status read",
                device_id=device_id,
            )
            updated, outcome = apply_event(stored, event)
            if updated is None:
                _logger.debug(
                    "Stale presence event device=%s event_time=%s stored=%s",
                    device_id,
                    event.event_time.isoformat(),
                    stored.last_event_time.isoformat() if stored is not None else None,
                )
                break
            written = await bounded(
                self._store.replace(updated, expected=stored),
                timeout=self._store_timeout,
                what="status write",
                device_id=device_id,
            )
            if written:
                break
            _logger.debug("Status write lost a race device=%s attempt=%d", device_id, attempt)
        else:
            raise ConcurrentUpdateError(
                f"gave up applying event after {self._max_attempts} conflicting writes",
                device_id=device_id,
            )

        recorded = await bounded(
            self._event_log.append(EventLogEntry.from_event(event, recorded_at=self._clock())),
            timeout=self._store_timeout,
            what="event log append",
            device_id=device_id,
        )
        if not recorded:
            _logger.debug("Event already logged device=%s event_time=%s", device_id, event.event_time.isoformat())

        _logger.debug(
            "Ingested presence event device=%s kind=%s planned=%s outcome=%s",
            device_id,
            event.kind,
            event.is_planned_disconnect,
            outcome,
        )
        return outcome
