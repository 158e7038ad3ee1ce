"""Actor resolution for API handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from . import security
from .config import Settings
from .dependencies import get_app_settings

SESSION_COOKIE = "inventory_admin_session"


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated administrator performing a request."""

    id: str


def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE)


def get_current_actor(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> Actor:
    """Require a validly signed session token from a cookie or bearer header."""

    token = _token_from_request(request)
    actor_id = security.verify_session(token, settings.secret_key) if token else None
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(id=actor_id)
