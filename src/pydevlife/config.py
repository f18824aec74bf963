"""Monitor configuration for pydevlife."""

from __future__ import annotations

import dataclasses
import os
from datetime import timedelta
from typing import Any

from pydevlife._constants import (
    DEFAULT_ALERT_CLAIM_TTL_SECONDS,
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_INGEST_MAX_ATTEMPTS,
    DEFAULT_MQTT_PORT,
    DEFAULT_NOTIFICATION_TOPIC,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_SWEEP_PAGE_SIZE,
    PRESENCE_TOPIC,
)
from pydevlife.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_optional_int(value: str) -> int | None:
    stripped = value.strip()
    if not stripped or stripped.lower() == "none":
        return None
    return int(stripped)


@dataclasses.dataclass(frozen=True)
class LifecycleConfig:
    """Monitor configuration, static for the lifetime of a process.

    Parameters
    ----------
    debounce_window : float
        Seconds an unplanned disconnect must persist before it is
        confirmed and alerted. Defaults to 15 minutes.
    sweep_interval : float
        Seconds between two periodic sweeps. Should not exceed the
        debounce window's granularity.
    sweep_page_size : int
        Rows fetched per page when scanning pending devices.
    sweep_max_pages : int or None
        Upper bound on pages scanned by one sweep. ``None`` scans until
        the store is exhausted. When bounded, the next sweep resumes where
        the previous one stopped.
    alert_claim_ttl : float
        Seconds a sweeper's claim on an episode stays valid while it
        dispatches the alert. Another sweeper skips the episode until
        the claim expires. Must exceed ``webhook_timeout``.
    ingest_max_attempts : int
        Conditional-write attempts per event before the parser gives up
        with :class:`~pydevlife.exceptions.ConcurrentUpdateError`.
    store_timeout : float or None
        Seconds a single status store or event log call may take before it
        is treated as a store failure. ``None`` disables the bound.
    notification_topic : str
        Identifier of the outbound alert topic, carried in every message.
    webhook_url : str or None
        When set, alerts are POSTed here as JSON. Otherwise they are
        emitted through logging only.
    webhook_timeout : float
        Total timeout in seconds for one webhook POST.
    mqtt_enabled : bool
        Subscribe to presence events over MQTT.
    mqtt_host : str
        Broker host name.
    mqtt_port : int
        Broker port.
    mqtt_topic : str
        Presence topic filter.
    mqtt_client_id : str
        MQTT client identifier used by the monitor itself.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Use TLS for the broker connection.
    mqtt_ca_file : str or None
        CA bundle used to verify the broker.
    mqtt_cert_file : str or None
        Client certificate for mutual TLS.
    mqtt_key_file : str or None
        Private key matching ``mqtt_cert_file``.
    """

    debounce_window: float = DEFAULT_DEBOUNCE_SECONDS
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    sweep_page_size: int = DEFAULT_SWEEP_PAGE_SIZE
    sweep_max_pages: int | None = None
    alert_claim_ttl: float = DEFAULT_ALERT_CLAIM_TTL_SECONDS
    ingest_max_attempts: int = DEFAULT_INGEST_MAX_ATTEMPTS
    store_timeout: float | None = 5.0
    notification_topic: str = DEFAULT_NOTIFICATION_TOPIC
    webhook_url: str | None = None
    webhook_timeout: float = 10.0
    mqtt_enabled: bool = False
    mqtt_host: str = ""
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_topic: str = PRESENCE_TOPIC
    mqtt_client_id: str = "pydevlife-monitor"
    mqtt_keepalive: int = 120
    mqtt_tls: bool = True
    mqtt_ca_file: str | None = None
    mqtt_cert_file: str | None = None
    mqtt_key_file: str | None = None

    def __post_init__(self) -> None:
        if self.debounce_window < 0:
            raise ConfigError(f"debounce_window must be >= 0, got {self.debounce_window}")
        if self.sweep_interval <= 0:
            raise ConfigError(f"sweep_interval must be > 0, got {self.sweep_interval}")
        if self.sweep_page_size < 1:
            raise ConfigError(f"sweep_page_size must be >= 1, got {self.sweep_page_size}")
        if self.sweep_max_pages is not None and self.sweep_max_pages < 1:
            raise ConfigError(f"sweep_max_pages must be >= 1 or None, got {self.sweep_max_pages}")
        if self.alert_claim_ttl <= 0:
            raise ConfigError(f"alert_claim_ttl must be > 0, got {self.alert_claim_ttl}")
        if self.ingest_max_attempts < 1:
            raise ConfigError(f"ingest_max_attempts must be >= 1, got {self.ingest_max_attempts}")
        if self.store_timeout is not None and self.store_timeout <= 0:
            raise ConfigError(f"store_timeout must be > 0 or None, got {self.store_timeout}")
        if self.webhook_timeout <= 0:
            raise ConfigError(f"webhook_timeout must be > 0, got {self.webhook_timeout}")
        if self.alert_claim_ttl <= self.webhook_timeout:
            raise ConfigError(
                f"alert_claim_ttl ({self.alert_claim_ttl}) must exceed webhook_timeout ({self.webhook_timeout})"
            )
        if self.mqtt_enabled and not self.mqtt_host:
            raise ConfigError("mqtt_host is required when mqtt_enabled is set")

    @property
    def debounce(self) -> timedelta:
        """Debounce window as a :class:`~datetime.timedelta`."""
        return timedelta(seconds=self.debounce_window)

    @property
    def claim_ttl(self) -> timedelta:
        return timedelta(seconds=self.alert_claim_ttl)

    @classmethod
    def from_env(cls, **overrides: Any) -> LifecycleConfig:
        """Create configuration from environment variables.

        Reads optional ``DEVLIFE_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        LifecycleConfig
            Populated configuration.

        Raises
        ------
        ConfigError
            If a numeric variable cannot be parsed or a value is out of range.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "DEVLIFE_NOTIFICATION_TOPIC": "notification_topic",
            "DEVLIFE_WEBHOOK_URL": "webhook_url",
            "DEVLIFE_MQTT_HOST": "mqtt_host",
            "DEVLIFE_MQTT_TOPIC": "mqtt_topic",
            "DEVLIFE_MQTT_CLIENT_ID": "mqtt_client_id",
            "DEVLIFE_MQTT_CA_FILE": "mqtt_ca_file",
            "DEVLIFE_MQTT_CERT_FILE": "mqtt_cert_file",
            "DEVLIFE_MQTT_KEY_FILE": "mqtt_key_file",
        }
        _ENV_FLOAT_MAP = {
            "DEVLIFE_DEBOUNCE_SECONDS": "debounce_window",
            "DEVLIFE_SWEEP_INTERVAL_SECONDS": "sweep_interval",
            "DEVLIFE_ALERT_CLAIM_TTL_SECONDS": "alert_claim_ttl",
            "DEVLIFE_WEBHOOK_TIMEOUT": "webhook_timeout",
            "DEVLIFE_STORE_TIMEOUT": "store_timeout",
        }
        _ENV_INT_MAP = {
            "DEVLIFE_SWEEP_PAGE_SIZE": "sweep_page_size",
            "DEVLIFE_INGEST_MAX_ATTEMPTS": "ingest_max_attempts",
            "DEVLIFE_MQTT_PORT": "mqtt_port",
            "DEVLIFE_MQTT_KEEPALIVE": "mqtt_keepalive",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)

            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)

            max_pages_env = env.get("DEVLIFE_SWEEP_MAX_PAGES")
            if max_pages_env is not None and "sweep_max_pages" not in overrides:
                config_kwargs["sweep_max_pages"] = _env_optional_int(max_pages_env)
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric DEVLIFE_* environment value: {exc}") from exc

        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("DEVLIFE_MQTT_ENABLED"), False)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("DEVLIFE_MQTT_TLS"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
