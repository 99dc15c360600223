"""
API key authentication.

Requests carry ``X-API-Key``; it is compared against FLOWORX_API_KEY. With
no key configured the API is open in development and refuses requests in
production.
"""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, status

from floworx import config
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter

logger = get_logger(__name__)


async def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """
    FastAPI dependency for every /api route.

    Raises:
        HTTPException: 401 on a missing or wrong key, 503 when production
            has no key configured
    """
    expected = config.API_KEY
    if not expected:
        if config.APP_ENV == "production":
            logger.error("FLOWORX_API_KEY is not set in production, rejecting request")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Service temporarily unavailable.",
            )
        return

    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        counter("api.auth_failures")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
