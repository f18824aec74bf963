"""pydevlife - debounced disconnection alerts for device fleets."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pydevlife")
except PackageNotFoundError:
    __version__ = "0+local"
from pydevlife._transport import WebhookChannel
from pydevlife.config import LifecycleConfig
from pydevlife.dispatch import AlertDispatcher, LogChannel, NotificationChannel
from pydevlife.exceptions import (
    ConcurrentUpdateError,
    ConfigError,
    DevLifeError,
    DispatchError,
    MalformedEventError,
    StoreError,
)
from pydevlife.ingestion.parser import EventParser, parse_presence_event
from pydevlife.models import (
    AlertMessage,
    DeviceState,
    DeviceStatus,
    EventLogEntry,
    Outcome,
    PresenceEvent,
    PresenceKind,
)
from pydevlife.monitor import LifecycleMonitor
from pydevlife.scheduler import SweepScheduler
from pydevlife.state.event_log import EventLog, InMemoryEventLog
from pydevlife.state.store import InMemoryStatusStore, StatusPage, StatusStore
from pydevlife.sweeper import DisconnectionSweeper, SweepReport

__all__ = [
    "__version__",
    "AlertDispatcher",
    "AlertMessage",
    "ConcurrentUpdateError",
    "ConfigError",
    "DevLifeError",
    "DeviceState",
    "DeviceStatus",
    "DisconnectionSweeper",
    "DispatchError",
    "EventLog",
    "EventLogEntry",
    "EventParser",
    "InMemoryEventLog",
    "InMemoryStatusStore",
    "LifecycleConfig",
    "LifecycleMonitor",
    "LogChannel",
    "MalformedEventError",
    "NotificationChannel",
    "Outcome",
    "PresenceEvent",
    "PresenceKind",
    "StatusPage",
    "StatusStore",
    "StoreError",
    "SweepReport",
    "SweepScheduler",
    "WebhookChannel",
    "parse_presence_event",
]
