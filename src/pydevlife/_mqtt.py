"""Internal MQTT presence subscription runtime."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pydevlife.config import LifecycleConfig
from pydevlife.exceptions import MalformedEventError

_PRESENCE_PREFIX = ("$aws", "events", "presence")


@dataclass(frozen=True)
class PresenceMessage:
    """Decoded MQTT presence message envelope."""

    topic: str
    event_type: str | None
    client_id: str | None
    payload: dict[str, Any]


def parse_presence_topic(topic: str) -> tuple[str, str] | None:
    """Split ``$aws/events/presence/<eventType>/<clientId>``.

    Returns ``None`` for topics that do not follow that layout.
    """
    parts = topic.split("/")
    if len(parts) != 5 or tuple(parts[:3]) != _PRESENCE_PREFIX:
        return None
    event_type, client_id = parts[3], parts[4]
    if not event_type or not client_id:
        return None
    return event_type, client_id


def decode_presence_message(topic: str, payload: bytes) -> PresenceMessage:
    """Decode a JSON presence payload received on *topic*."""
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedEventError(f"presence payload on {topic} is not JSON", payload=payload) from exc
    if not isinstance(parsed, dict):
        raise MalformedEventError(f"presence payload on {topic} is not an object", payload=parsed)

    topic_parts = parse_presence_topic(topic)
    event_type, client_id = topic_parts if topic_parts is not None else (None, None)
    return PresenceMessage(topic=topic, event_type=event_type, client_id=client_id, payload=parsed)


class PresenceMqttRuntime:
    """Threaded paho-mqtt runtime that emits decoded presence messages onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[PresenceMessage], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self, config: LifecycleConfig) -> None:
        """Connect and subscribe to the configured presence topic."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            config.mqtt_host,
            config.mqtt_port,
            config.mqtt_topic,
            config.mqtt_client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.mqtt_client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if config.mqtt_tls:
            client.tls_set(
                ca_certs=config.mqtt_ca_file,
                certfile=config.mqtt_cert_file,
                keyfile=config.mqtt_key_file,
            )

        self._topic = config.mqtt_topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            if self._topic:
                self._logger.debug("MQTT subscribing topic=%s", self._topic)
                # QoS 1: the broker redelivers unacknowledged presence events.
                c.subscribe(self._topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                message = decode_presence_message(msg.topic, msg.payload)
            except MalformedEventError:
                self._logger.warning("Dropping undecodable presence message topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("Presence message topic=%s type=%s", msg.topic, message.event_type)
            self._loop.call_soon_threadsafe(self._on_message, message)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
