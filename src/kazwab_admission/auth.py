"""Bearer token guard for the admin API."""

import hashlib
import secrets
from typing import Annotated

import structlog
from fastapi import Header, HTTPException, status

from kazwab_admission.config import get_settings

logger = structlog.get_logger()


def _token_hash(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()[:16]


async def require_admin(authorization: Annotated[str | None, Header()] = None) -> None:
    """FastAPI dependency checking ``Authorization: Bearer <admin_token>``.

    Raises:
        HTTPException: 403 when no admin token is configured, 401 when the
            header is missing or the token does not match.
    """
    expected = get_settings().admin_token
    if not expected:
        logger.warning("admin_api_disabled")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API is disabled. Set KAZWAB_ADMIN_TOKEN to enable it.",
        )

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not secrets.compare_digest(token.strip(), expected):
        logger.warning("admin_token_rejected", token_hash=_token_hash(token))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
