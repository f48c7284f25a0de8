"""
Stateless OAuth ``state`` parameter.

The callback recovers the initiating user from the state itself, so no
server-side session store is needed: ``state = base64(json({userId, timestamp}))``
with ``timestamp`` in epoch milliseconds.
"""

from __future__ import annotations

import binascii
import json
import time
from base64 import b64decode, b64encode
from typing import Optional

STATE_TTL_SECONDS = 600


class InvalidStateError(ValueError):
    pass


def create_state(user_id: int, *, now: Optional[float] = None) -> str:
    ts = int((now if now is not None else time.time()) * 1000)
    payload = json.dumps({"userId": user_id, "timestamp": ts})
    return b64encode(payload.encode()).decode()


def parse_state(state: str, *, now: Optional[float] = None, ttl: int = STATE_TTL_SECONDS) -> int:
    """Return the ``userId`` encoded in *state*.  Raises ``InvalidStateError``."""
    try:
        payload = json.loads(b64decode(state, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise InvalidStateError(f"Invalid state parameter: {exc}") from exc

    if not isinstance(payload, dict) or not payload.get("userId"):
        raise InvalidStateError("Invalid state parameter: missing userId")

    ts = payload.get("timestamp")
    current_ms = (now if now is not None else time.time()) * 1000
    if not isinstance(ts, (int, float)) or current_ms - ts > ttl * 1000:
        raise InvalidStateError("OAuth state expired")
    return _user_id(payload["userId"])


def _user_id(raw: object) -> int:
    if isinstance(raw, bool):
        raise InvalidStateError("Invalid state parameter: userId must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.isascii() and raw.isdigit():
        return int(raw)
    raise InvalidStateError("Invalid state parameter: userId must be an integer")
