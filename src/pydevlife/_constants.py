"""Internal constants shared across the library."""

DEFAULT_DEBOUNCE_SECONDS = 900.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0
DEFAULT_SWEEP_PAGE_SIZE = 100
DEFAULT_ALERT_CLAIM_TTL_SECONDS = 300.0
DEFAULT_INGEST_MAX_ATTEMPTS = 5

DEFAULT_NOTIFICATION_TOPIC = "iot-device-lifecycle-alerts"

# AWS IoT publishes lifecycle events on
# $aws/events/presence/{connected|disconnected}/<clientId>
PRESENCE_TOPIC = "$aws/events/presence/+/+"
DEFAULT_MQTT_PORT = 8883

USER_AGENT = "pydevlife"

# disconnectReason values the broker reports for a clean, client-initiated close.
PLANNED_DISCONNECT_REASONS: frozenset[str] = frozenset({"CLIENT_INITIATED_DISCONNECT"})

DEFAULT_ALERT_REASON = "unplanned disconnect"
