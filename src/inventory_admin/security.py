"""Session token helpers.

Tokens are issued by the authentication service that fronts the admin
panel; this module only needs to produce and check the signature so the API
can trust the actor id a token carries.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac


def _signature(value: str, secret_key: str) -> bytes:
    return hmac.new(secret_key.encode(), value.encode(), hashlib.sha256).digest()


def sign_session(actor_id: str, secret_key: str) -> str:
    """Return an HMAC signed session token for *actor_id*."""

    encoded = base64.urlsafe_b64encode(_signature(actor_id, secret_key)).decode().rstrip("=")
    return f"{actor_id}.{encoded}"


def verify_session(token: str, secret_key: str) -> str | None:
    """Validate *token* and return the actor id it carries."""

    try:
        value, signature = token.rsplit(".", 1)
    except ValueError:
        return None
    if not value:
        return None

    padding = "=" * (-len(signature) % 4)
    try:
        provided = base64.urlsafe_b64decode(signature + padding)
    except (binascii.Error, ValueError):  # pragma: no cover - invalid base64
        return None

    if not hmac.compare_digest(_signature(value, secret_key), provided):
        return None
    return value
