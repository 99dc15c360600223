"""
Error message sanitization for API responses.

Keeps file paths, SQL errors, tokens and credential ids out of messages
returned to clients. Full errors are logged server-side.
"""

from __future__ import annotations

import re

from floworx.observability.logging import get_logger

logger = get_logger(__name__)

SENSITIVE_PATTERNS = [
    # File paths
    r"/[^\s]+\.py",
    r"[A-Za-z]:\\[^\s]+",
    # Stack traces
    r"Traceback \(most recent call last\)",
    r"File \".*\"",
    r"line \d+",
    # Database errors
    r"sqlite3?\.",
    r"UNIQUE constraint",
    r"no such table",
    r"no such column",
    # Tokens, API keys, n8n credential ids
    r"[A-Za-z0-9_-]{20,}",
    r"Bearer [A-Za-z0-9._-]+",
    r"X-N8N-API-KEY",
    r"refresh_token",
    # Internal module names
    r"floworx\.[a-z_.]+",
]

GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required.",
    403: "Access denied.",
    404: "Resource not found.",
    409: "Request conflicts with the current state.",
    422: "Invalid data format.",
    502: "Workflow service request failed.",
    500: "An internal error occurred. Please try again later.",
    503: "Service temporarily unavailable.",
}

MAX_CLIENT_MESSAGE_LENGTH = 200


def sanitize_error_message(message: str, status_code: int = 500) -> str:
    """
    Return message unchanged when it is short and carries nothing sensitive;
    otherwise the generic message for status_code. 5xx always gets the
    generic message.
    """
    generic = GENERIC_MESSAGES.get(status_code, "An error occurred.")
    if not message or status_code >= 500:
        return generic

    for pattern in SENSITIVE_PATTERNS:
        if re.search(pattern, message, re.IGNORECASE):
            logger.warning("Sanitized sensitive error pattern: %s", pattern)
            return generic

    if len(message) > MAX_CLIENT_MESSAGE_LENGTH or any(c in message for c in "{}[]\n"):
        return generic
    return message


def get_safe_error_detail(error: Exception, status_code: int = 500, context: str | None = None) -> str:
    """
    Log the full error and return a client-safe detail string. For 5xx the
    context (when given) becomes the message.
    """
    logger.error("Error (status=%d): %s - %s", status_code, type(error).__name__, error)
    if context and status_code >= 500:
        return context
    return sanitize_error_message(str(error), status_code)
