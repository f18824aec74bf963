#!/usr/bin/env python3
"""Replay captured presence events through the disconnection monitor.

Reads a JSON-lines file where each line is a presence payload (raw AWS IoT
lifecycle event or the topic-rule projection), feeds the lines in file
order, and sweeps with the event time as the clock. Prints every alert the
monitor would have sent.

Use this to check a debounce window against real traffic before deploying it.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pydevlife import LifecycleConfig, LifecycleMonitor, MalformedEventError, Outcome  # noqa: E402
from pydevlife.ingestion.parser import parse_presence_event  # noqa: E402
from pydevlife.models.alert import AlertMessage  # noqa: E402

_LOG = logging.getLogger("replay_events")


@dataclass
class _ReplayClock:
    now: datetime | None = None

    def __call__(self) -> datetime:
        if self.now is None:
            raise RuntimeError("replay clock used before the first event")
        return self.now

    def advance(self, value: datetime) -> None:
        if self.now is None or value > self.now:
            self.now = value


@dataclass
class _CollectingChannel:
    alerts: list[AlertMessage] = field(default_factory=list)

    async def publish(self, message: AlertMessage) -> None:
        self.alerts.append(message)
        print(json.dumps({"alert": json.loads(message.to_json())}))


def _read_lines(path: Path) -> list[tuple[int, Any]]:
    rows: list[tuple[int, Any]] = []
    with path.open("r", encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                rows.append((lineno, json.loads(text)))
            except json.JSONDecodeError:
                _LOG.warning("line %d: not JSON, skipped", lineno)
    return rows


async def _replay(path: Path, debounce_seconds: float) -> int:
    clock = _ReplayClock()
    channel = _CollectingChannel()
    config = LifecycleConfig(debounce_window=debounce_seconds)
    outcomes: dict[Outcome, int] = {}
    malformed = 0

    async with LifecycleMonitor(config, channel=channel, clock=clock) as monitor:
        for lineno, payload in _read_lines(path):
            try:
                event = parse_presence_event(payload)
            except MalformedEventError as exc:
                malformed += 1
                _LOG.warning("line %d: %s", lineno, exc)
                continue
            clock.advance(event.event_time)
            await monitor.sweep()
            outcome = await monitor.ingest(event)
            outcomes[outcome] = outcomes.get(outcome, 0) + 1

        if clock.now is not None:
            clock.advance(clock.now + timedelta(seconds=debounce_seconds))
            await monitor.sweep()

    summary = {
        "outcomes": {str(k): v for k, v in sorted(outcomes.items())},
        "malformed": malformed,
        "alerts": len(channel.alerts),
    }
    print(json.dumps({"summary": summary}))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("events", type=Path, help="JSON-lines file of presence payloads")
    parser.add_argument(
        "--debounce",
        type=float,
        default=LifecycleConfig().debounce_window,
        help="debounce window in seconds (default: %(default)s)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.events.is_file():
        parser.error(f"{args.events} is not a file")
    return asyncio.run(_replay(args.events, args.debounce))


if __name__ == "__main__":
    raise SystemExit(main())
