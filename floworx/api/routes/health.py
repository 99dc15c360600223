"""Health endpoints.

- /health - service status plus whether n8n and the OAuth clients are configured
- /health/db - database connection pool health
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from floworx import config
from floworx.infrastructure.database import get_pool_stats
from floworx.observability.telemetry import snapshot_counters

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Configuration readiness only; no outbound calls are made."""
    return {
        "status": "healthy",
        "service": "FloWorx API",
        "version": config.APP_VERSION,
        "environment": config.APP_ENV,
        "timestamp": datetime.now(UTC).isoformat(),
        "integrations": {
            "n8n_configured": bool(config.N8N_BASE_URL and config.N8N_API_KEY),
            "google_oauth_configured": bool(
                config.GOOGLE_OAUTH_CLIENT_ID and config.GOOGLE_OAUTH_CLIENT_SECRET
            ),
            "microsoft_oauth_configured": bool(
                config.MICROSOFT_OAUTH_CLIENT_ID and config.MICROSOFT_OAUTH_CLIENT_SECRET
            ),
        },
        "counters": snapshot_counters(),
    }


@router.get("/health/db")
async def database_health() -> dict[str, Any]:
    """Alerts when pool usage exceeds 80%."""
    stats = get_pool_stats()
    usage_percent = stats["usage_percent"]

    return {
        "status": "degraded" if usage_percent > 80 else "healthy",
        "pool": stats,
        "warning": "Pool usage high" if usage_percent > 80 else None,
    }
