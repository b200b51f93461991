"""Admin bearer-token checks for restriction and recompute endpoints."""

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from peek.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# auto_error=False so a missing header yields our 401 instead of FastAPI's 403
_bearer_scheme = HTTPBearer(auto_error=False)


def _matches_admin_key(token: str) -> bool:
    return hmac.compare_digest(
        token.encode("utf-8"),
        settings.admin_api_key.encode("utf-8"),
    )


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """
    Dependency that enforces `Authorization: Bearer <ADMIN_API_KEY>`.

    Returns the validated key. Responds 503 when no admin key is configured.
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin authentication not configured",
        )

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin API key required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not _matches_admin_key(credentials.credentials):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Failed admin auth attempt from %s", client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


async def is_admin_request(request: Request) -> bool:
    """Non-raising check, used to gate unfiltered listings (apply_exclusions=false)."""
    if not settings.admin_api_key:
        return False

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return False
    return _matches_admin_key(auth_header[len("Bearer "):])
