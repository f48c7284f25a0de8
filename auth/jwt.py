"""
Bearer tokens for the import API.

A token is ``urlsafe_b64(json(payload)) + "." + hex(hmac_sha256(payload))``
with payload ``{user_id, role, iat, exp}``.  The secret and lifetime come
from ``JWT_SECRET`` / ``JWT_EXPIRY_SECONDS``.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from config.settings import Settings, config

ROLES = ("USER", "ADMIN")


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: int, role: str = "USER", *, settings: Settings = config, now: Optional[float] = None) -> str:
    issued = int(now if now is not None else time.time())
    payload = {
        "user_id": int(user_id),
        "role": role if role in ROLES else "USER",
        "iat": issued,
        "exp": issued + settings.jwt_expiry_seconds,
    }
    raw = json.dumps(payload, separators=(",", ":")).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw, settings.jwt_secret)


def _unauthorized(reason: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Invalid or expired token: {reason}",
    )


def verify_token(token: str, *, settings: Settings = config, now: Optional[float] = None) -> Dict[str, Any]:
    """
    Return the claims of a valid token, with ``user_id`` as an int.

    Raises ``HTTPException(401)`` for a malformed, forged or expired token.
    """
    body, sep, signature = token.partition(".")
    if not sep:
        raise _unauthorized("bad format")
    try:
        raw = urlsafe_b64decode(body.encode())
    except (binascii.Error, ValueError):
        raise _unauthorized("bad format") from None
    if not hmac.compare_digest(signature, _sign(raw, settings.jwt_secret)):
        raise _unauthorized("bad signature")

    try:
        claims = json.loads(raw)
        claims["user_id"] = int(claims["user_id"])
        expires = float(claims.get("exp", 0))
    except (ValueError, KeyError, TypeError):
        raise _unauthorized("bad payload") from None
    if expires < (now if now is not None else time.time()):
        raise _unauthorized("token expired")
    return claims
