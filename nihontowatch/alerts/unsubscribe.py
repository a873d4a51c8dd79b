"""Signed one-click unsubscribe tokens.

A token is ``base64url(json payload) + "." + base64url(hmac-sha256)``; the
payload carries the user id (u), email (e), type (t), optional saved search
id (s) and the issue time in epoch milliseconds (ts).
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

UNSUBSCRIBE_TYPES = ("all", "marketing", "saved_search")
TOKEN_MAX_AGE_MS = 30 * 24 * 60 * 60 * 1000


@dataclass
class UnsubscribePayload:
    user_id: str
    email: str
    type: str
    saved_search_id: Optional[str]
    timestamp: int


@dataclass
class TokenVerification:
    valid: bool
    payload: Optional[UnsubscribePayload] = None
    error: Optional[str] = None


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return _b64encode(digest)


def generate_unsubscribe_token(
    secret: str,
    user_id: str,
    email: str,
    type: str,
    saved_search_id: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> str:
    payload = {"u": user_id, "e": email, "t": type}
    if saved_search_id is not None:
        payload["s"] = saved_search_id
    payload["ts"] = int(time.time() * 1000) if now_ms is None else now_ms

    encoded = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{encoded}.{_sign(encoded, secret)}"


def verify_unsubscribe_token(
    token: str, secret: str, now_ms: Optional[int] = None
) -> TokenVerification:
    """Check the signature and age of a token.

    Verification always fails when no secret is configured.
    """
    if not secret:
        return TokenVerification(valid=False, error="Token verification unavailable")

    parts = token.split(".")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return TokenVerification(valid=False, error="Invalid token format")
    encoded, signature = parts[0], parts[1]

    if not hmac.compare_digest(signature.encode("utf-8"), _sign(encoded, secret).encode("utf-8")):
        return TokenVerification(valid=False, error="Invalid token signature")

    try:
        data = json.loads(_b64decode(encoded).decode("utf-8"))
        issued = int(data["ts"])
        payload = UnsubscribePayload(
            user_id=data["u"],
            email=data["e"],
            type=data["t"],
            saved_search_id=data.get("s"),
            timestamp=issued,
        )
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
        return TokenVerification(valid=False, error="Failed to decode token")

    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    if now_ms - issued > TOKEN_MAX_AGE_MS:
        return TokenVerification(valid=False, error="Token expired")

    return TokenVerification(valid=True, payload=payload)


def get_unsubscribe_url(
    base_url: str,
    secret: str,
    user_id: str,
    email: str,
    type: str,
    saved_search_id: Optional[str] = None,
) -> str:
    token = generate_unsubscribe_token(secret, user_id, email, type, saved_search_id)
    return f"{base_url.rstrip('/')}/api/unsubscribe?token={quote(token, safe='')}"
