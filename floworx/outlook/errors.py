"""
Microsoft Graph error classification.

Graph returns ``{"error": {"code": ..., "message": ...}}`` bodies. The code
decides whether a failure is retryable and what the caller should do next;
unknown codes fall back to classification by HTTP status.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import requests

from floworx.config import GRAPH_RETRY_BASE_DELAY, GRAPH_RETRY_MAX, GRAPH_RETRY_MAX_DELAY
from floworx.infrastructure.retry import AdapterError, RetryPolicy

REFRESH_TOKEN = "refresh_token"
FIX_REQUEST = "fix_request"
CHECK_PERMISSIONS = "check_permissions"
CHECK_RESOURCE = "check_resource"
SKIP_OR_UPDATE = "skip_or_update"
RESOLVE_CONFLICT = "resolve_conflict"
RETRY_WITH_BACKOFF = "retry_with_backoff"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class GraphErrorDefinition:
    status: int | None
    retryable: bool
    action: str
    description: str


GRAPH_ERROR_CODES: dict[str, GraphErrorDefinition] = {
    "InvalidAuthenticationToken": GraphErrorDefinition(401, True, REFRESH_TOKEN, "The access token is invalid or expired"),
    "AuthenticationFailed": GraphErrorDefinition(401, True, REFRESH_TOKEN, "Authentication failed"),
    "InvalidRequest": GraphErrorDefinition(400, False, FIX_REQUEST, "The request is invalid"),
    "ErrorInvalidRequest": GraphErrorDefinition(400, False, FIX_REQUEST, "The request is invalid or malformed"),
    "ErrorInvalidIdMalformed": GraphErrorDefinition(400, False, FIX_REQUEST, "The ID format is invalid or malformed"),
    "ErrorInvalidParameter": GraphErrorDefinition(400, False, FIX_REQUEST, "One or more parameters are invalid"),
    "ErrorPropertyValidationFailure": GraphErrorDefinition(400, False, FIX_REQUEST, "Property validation failed"),
    "Forbidden": GraphErrorDefinition(403, False, CHECK_PERMISSIONS, "Insufficient permissions to perform the operation"),
    "InsufficientPrivileges": GraphErrorDefinition(403, False, CHECK_PERMISSIONS, "Insufficient privileges to perform the operation"),
    "ItemNotFound": GraphErrorDefinition(404, False, CHECK_RESOURCE, "The requested resource was not found"),
    "ErrorFolderExists": GraphErrorDefinition(409, False, SKIP_OR_UPDATE, "The folder already exists"),
    "ErrorFolderNameConflict": GraphErrorDefinition(409, False, SKIP_OR_UPDATE, "A folder with this name already exists"),
    "ErrorFolderHierarchyConflict": GraphErrorDefinition(409, False, SKIP_OR_UPDATE, "Folder hierarchy conflict"),
    "Conflict": GraphErrorDefinition(409, False, RESOLVE_CONFLICT, "A conflict occurred with the current state"),
    "TooManyRequests": GraphErrorDefinition(429, True, RETRY_WITH_BACKOFF, "Too many requests - rate limited"),
    "QuotaExceeded": GraphErrorDefinition(429, True, RETRY_WITH_BACKOFF, "Quota exceeded"),
    "ThrottledRequest": GraphErrorDefinition(429, True, RETRY_WITH_BACKOFF, "Request was throttled"),
    "ThrottledRequestException": GraphErrorDefinition(429, True, RETRY_WITH_BACKOFF, "Request was throttled due to high load"),
    "InternalServerError": GraphErrorDefinition(500, True, RETRY_WITH_BACKOFF, "Internal server error"),
    "ServiceUnavailable": GraphErrorDefinition(503, True, RETRY_WITH_BACKOFF, "Service temporarily unavailable"),
    "GatewayTimeout": GraphErrorDefinition(504, True, RETRY_WITH_BACKOFF, "Gateway timeout"),
}

STATUS_ERRORS: dict[int, GraphErrorDefinition] = {
    400: GraphErrorDefinition(400, False, FIX_REQUEST, "Bad Request"),
    401: GraphErrorDefinition(401, True, REFRESH_TOKEN, "Unauthorized"),
    403: GraphErrorDefinition(403, False, CHECK_PERMISSIONS, "Forbidden"),
    404: GraphErrorDefinition(404, False, CHECK_RESOURCE, "Not Found"),
    409: GraphErrorDefinition(409, False, SKIP_OR_UPDATE, "Conflict"),
    429: GraphErrorDefinition(429, True, RETRY_WITH_BACKOFF, "Too Many Requests"),
    500: GraphErrorDefinition(500, True, RETRY_WITH_BACKOFF, "Internal Server Error"),
    502: GraphErrorDefinition(502, True, RETRY_WITH_BACKOFF, "Bad Gateway"),
    503: GraphErrorDefinition(503, True, RETRY_WITH_BACKOFF, "Service Unavailable"),
    504: GraphErrorDefinition(504, True, RETRY_WITH_BACKOFF, "Gateway Timeout"),
}

_UNKNOWN = GraphErrorDefinition(None, False, UNKNOWN, "Unknown Error")
_STATUS_IN_MESSAGE = re.compile(r"Status:\s*(\d+)")
_CODE_IN_MESSAGE = re.compile(r"code[:\s]+([A-Za-z]+)", re.IGNORECASE)


def get_error_definition(code: str | None, status: int | None) -> GraphErrorDefinition:
    if code and code in GRAPH_ERROR_CODES:
        return GRAPH_ERROR_CODES[code]
    if status is not None and status in STATUS_ERRORS:
        return STATUS_ERRORS[status]
    return _UNKNOWN


class GraphApiError(AdapterError):
    """A classified Microsoft Graph failure."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
        details: Any = None,
    ):
        super().__init__(message, status_code)
        definition = get_error_definition(code, status_code)
        self.code = code
        self.retryable = definition.retryable
        self.action = definition.action
        self.description = definition.description
        self.retry_after = retry_after
        self.details = details

    @property
    def is_folder_conflict(self) -> bool:
        return self.action == SKIP_OR_UPDATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status_code,
            "code": self.code,
            "message": str(self),
            "retryable": self.retryable,
            "action": self.action,
            "description": self.description,
        }


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def analyze_graph_error(
    status: int | None,
    body: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    message: str | None = None,
) -> GraphApiError:
    """
    Build a GraphApiError from the pieces of a failed call.

    When no JSON body is available the status and code are recovered from
    a message such as ``"Status: 429 code: TooManyRequests"``.
    """
    body = body or {}
    error_body = body.get("error") if isinstance(body.get("error"), dict) else body
    code = error_body.get("code")
    text = error_body.get("message") or message or "Unknown error"

    if status is None and message:
        match = _STATUS_IN_MESSAGE.search(message)
        status = int(match.group(1)) if match else None
    if code is None and message:
        match = _CODE_IN_MESSAGE.search(message)
        code = match.group(1) if match else None

    retry_after = _parse_retry_after((headers or {}).get("Retry-After"))
    return GraphApiError(
        text,
        status_code=status,
        code=code,
        retry_after=retry_after,
        details=error_body.get("details"),
    )


def error_from_response(response: requests.Response) -> GraphApiError:
    try:
        body = response.json()
    except ValueError:
        body = None
    return analyze_graph_error(
        response.status_code,
        body if isinstance(body, dict) else None,
        dict(response.headers),
        message=response.reason,
    )


class GraphRetryPolicy(RetryPolicy):
    """
    Retries Graph errors whose classification is retry_with_backoff, plus
    transport failures. Token refresh is handled by the client, not here.
    """

    def should_retry(self, exc: AdapterError) -> bool:
        if isinstance(exc, GraphApiError):
            if exc.status_code is None and exc.action == UNKNOWN:
                return True
            return exc.action == RETRY_WITH_BACKOFF
        return super().should_retry(exc)


def graph_retry_policy(stage: str = "graph", **overrides: Any) -> GraphRetryPolicy:
    """Base 1 s, max 30 s, 3 retries after the first attempt, with jitter."""
    settings: dict[str, Any] = {
        "max_attempts": GRAPH_RETRY_MAX + 1,
        "base_delay": GRAPH_RETRY_BASE_DELAY,
        "max_delay": GRAPH_RETRY_MAX_DELAY,
        "jitter": 0.5,
    }
    settings.update(overrides)
    return GraphRetryPolicy(stage, **settings)
