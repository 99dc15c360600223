"""FastAPI server for FloWorx onboarding, provisioning and deployment"""

from __future__ import annotations

import os
import sqlite3

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from floworx import config
from floworx.api.routes.business_types import router as business_types_router
from floworx.api.routes.health import router as health_router
from floworx.api.routes.profiles import router as profiles_router
from floworx.infrastructure.database import init_database
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event

logger = get_logger(__name__)

app = FastAPI(title="FloWorx API", version=config.APP_VERSION)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Only field names are returned to the client; the full errors are logged.

    Side Effects:
        - Logs the validation errors
        - Increments api.validation_errors
    """
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors() if err.get("loc")],
        },
    )


ALLOWED_ORIGINS = [
    origin.strip() for origin in os.getenv("FLOWORX_ALLOWED_ORIGINS", "").split(",") if origin.strip()
]
if config.APP_ENV == "development":
    ALLOWED_ORIGINS.extend(["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-API-Key", "X-Request-ID"],
)

try:
    logger.info("Initializing database schema...")
    init_database()
    logger.info("Database initialization complete")
except sqlite3.OperationalError as e:
    logger.critical("Database schema error: %s", e)
    raise RuntimeError(f"Database initialization failed: {e}") from e

if config.APP_ENV == "production" and not config.API_KEY:
    logger.critical("FLOWORX_API_KEY is not set in production; /api endpoints will reject requests")
elif not config.API_KEY:
    logger.warning("FLOWORX_API_KEY not set, /api endpoints are open (development only)")

app.include_router(health_router)
app.include_router(business_types_router)
app.include_router(profiles_router)

log_event("api.startup", service="floworx", version=config.APP_VERSION, env=config.APP_ENV)
