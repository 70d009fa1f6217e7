"""Request auth dependencies: end-user bearer tokens and the cron shared secret."""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

import jwt
from fastapi import HTTPException, Request, status

from app.core.config import settings

logger = logging.getLogger(__name__)

# Matches the user_id column width.
MAX_USER_ID_LENGTH = 64


@dataclass(frozen=True)
class AuthUser:
    user_id: str
    email: str | None = None


def _extract_bearer(request: Request) -> str:
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""


def verify_user_token(token: str) -> dict:
    """Verify an identity-provider JWT and return its claims; raises jwt exceptions on failure."""
    audience = str(getattr(settings, "AUTH_JWT_AUDIENCE", "") or "").strip() or None
    return jwt.decode(
        token,
        settings.AUTH_JWT_SECRET,
        algorithms=[settings.AUTH_JWT_ALGORITHM],
        audience=audience,
        options={"verify_aud": audience is not None},
    )


def require_user(request: Request) -> AuthUser:
    if not str(getattr(settings, "AUTH_JWT_SECRET", "") or "").strip():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="User auth not configured",
        )

    token = _extract_bearer(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        claims = verify_user_token(token)
    except jwt.PyJWTError as exc:
        logger.info("Rejected user token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated") from exc

    user_id = str(claims.get("sub") or "").strip()
    if not user_id or len(user_id) > MAX_USER_ID_LENGTH:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return AuthUser(user_id=user_id, email=claims.get("email"))


def require_cron_auth(request: Request) -> None:
    expected = str(getattr(settings, "CRON_SECRET", "") or "").strip()
    if not expected:
        environment = str(getattr(settings, "ENVIRONMENT", "development") or "development").strip().lower()
        if environment == "production":
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Cron secret not configured",
            )
        return

    presented = _extract_bearer(request)
    if not presented or not hmac.compare_digest(presented, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
