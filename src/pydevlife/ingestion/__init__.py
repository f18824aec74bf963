"""Ingestion layer.

This package contains the presence event parser and the adapters that turn
transport messages (MQTT, replayed files) into validated presence events.
"""

__all__: list[str] = []
