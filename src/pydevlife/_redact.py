"""Redaction of presence payloads before they are logged.

AWS IoT lifecycle events carry the client's source IP, its certificate
principal and a session id next to the fields the monitor cares about.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

REDACTED = "<redacted>"

# Compared after lowercasing and dropping "_" and "-", so ``ipAddress``,
# ``ip_address`` and ``IP-Address`` all match.
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "ipaddress",
        "principalidentifier",
        "sessionidentifier",
        "password",
        "token",
        "authorization",
        "cookie",
    }
)

_MAX_DEPTH = 10


def _is_sensitive(key: Any) -> bool:
    normalized = str(key).lower().replace("_", "").replace("-", "")
    return normalized in _SENSITIVE_KEYS


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to pass to a logger.

    Sensitive mapping keys are replaced with ``<redacted>`` at any depth.
    Strings longer than *max_string* are truncated.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    child_depth = _depth + 1
    if isinstance(value, Mapping):
        return {
            str(k): REDACTED if _is_sensitive(k) else redact_for_log(v, max_string=max_string, _depth=child_depth)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [redact_for_log(v, max_string=max_string, _depth=child_depth) for v in value]
    return repr(value)
