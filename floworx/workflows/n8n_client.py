"""
n8n public REST API client (``/api/v1``).

Covers the workflow, credential and execution endpoints used by deployment
and diagnostics. Every request carries the ``X-N8N-API-KEY`` header.
Idempotent requests are retried on transport errors, 429 and 5xx; creates
are sent once.
"""

from __future__ import annotations

from typing import Any

import requests

from floworx.config import N8N_API_KEY, N8N_BASE_URL, N8N_TIMEOUT_SECONDS
from floworx.infrastructure.retry import AdapterError, CircuitBreaker, CircuitOpenError, RetryPolicy
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class N8nApiError(AdapterError):
    """Non-2xx response (status_code set) or transport failure (status_code None)."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message, status_code)
        self.body = body


def _drop_none(params: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class N8nClient:
    def __init__(
        self,
        base_url: str = N8N_BASE_URL,
        api_key: str = N8N_API_KEY,
        session: requests.Session | None = None,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        timeout: float = N8N_TIMEOUT_SECONDS,
    ):
        self.base_url = f"{base_url.rstrip('/')}/api/v1"
        self.api_key = api_key
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy("n8n")
        self.breaker = breaker or CircuitBreaker("n8n")
        self.timeout = timeout

    def _send(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers={"X-N8N-API-KEY": self.api_key, "Content-Type": "application/json"},
                json=json_body,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise N8nApiError(f"n8n {method} {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error("n8n API error: %s %s -> %s", method, path, response.status_code)
            raise N8nApiError(
                f"n8n {method} {path} failed: {response.status_code} {response.reason}",
                response.status_code,
                response.text,
            )
        if not response.content:
            return {}
        return response.json()

    def request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> Any:
        """
        Raises:
            N8nApiError: Non-2xx response after retries, or the circuit is open
        """
        counter(f"n8n.requests.{method.lower()}")
        try:
            if not retry:
                return self.breaker.call(self._send, method, path, json_body, params)
            return self.retry_policy.execute(
                lambda: self.breaker.call(self._send, method, path, json_body, params)
            )
        except CircuitOpenError as e:
            raise N8nApiError(f"n8n {method} {path} skipped: {e}") from e

    # --- Workflows ---

    def create_workflow(self, workflow: dict[str, Any]) -> dict[str, Any]:
        created = self.request("POST", "/workflows", workflow, retry=False)
        log_event("n8n.workflow_created", workflow_id=created.get("id"), name=workflow.get("name"))
        return created

    def list_workflows(
        self,
        active: bool | None = None,
        tags: str | None = None,
        name: str | None = None,
        project_id: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        params = _drop_none(
            {
                "active": None if active is None else str(active).lower(),
                "tags": tags,
                "name": name,
                "projectId": project_id,
                "limit": limit,
                "cursor": cursor,
            }
        )
        return self.request("GET", "/workflows", params=params or None)

    def get_workflow(self, workflow_id: str) -> dict[str, Any]:
        return self.request("GET", f"/workflows/{workflow_id}")

    def update_workflow(self, workflow_id: str, workflow: dict[str, Any]) -> dict[str, Any]:
        return self.request("PUT", f"/workflows/{workflow_id}", workflow)

    def delete_workflow(self, workflow_id: str) -> dict[str, Any]:
        deleted = self.request("DELETE", f"/workflows/{workflow_id}")
        log_event("n8n.workflow_deleted", workflow_id=workflow_id)
        return deleted

    def activate_workflow(self, workflow_id: str) -> dict[str, Any]:
        return self.request("POST", f"/workflows/{workflow_id}/activate")

    def deactivate_workflow(self, workflow_id: str) -> dict[str, Any]:
        return self.request("POST", f"/workflows/{workflow_id}/deactivate")

    def transfer_workflow(self, workflow_id: str, destination_project_id: str) -> dict[str, Any]:
        return self.request(
            "PUT",
            f"/workflows/{workflow_id}/transfer",
            {"destinationProjectId": destination_project_id},
        )

    def get_workflow_tags(self, workflow_id: str) -> list[dict[str, Any]]:
        return self.request("GET", f"/workflows/{workflow_id}/tags")

    def update_workflow_tags(self, workflow_id: str, tag_ids: list[str]) -> list[dict[str, Any]]:
        return self.request(
            "PUT", f"/workflows/{workflow_id}/tags", [{"id": tag_id} for tag_id in tag_ids]
        )

    # --- Credentials ---

    def create_credential(
        self,
        name: str,
        credential_type: str,
        data: dict[str, Any],
        node_types: list[str] | None = None,
    ) -> dict[str, Any]:
        """The response body is returned as-is; see extract_credential_id."""
        body: dict[str, Any] = {"name": name, "type": credential_type, "data": data}
        if node_types:
            body["nodesAccess"] = [{"nodeType": node_type} for node_type in node_types]
        created = self.request("POST", "/credentials", body, retry=False)
        log_event("n8n.credential_created", name=name, type=credential_type)
        return created

    def delete_credential(self, credential_id: str) -> dict[str, Any]:
        return self.request("DELETE", f"/credentials/{credential_id}")

    def get_credential_schema(self, credential_type: str) -> dict[str, Any]:
        return self.request("GET", f"/credentials/schema/{credential_type}")

    def transfer_credential(self, credential_id: str, destination_project_id: str) -> dict[str, Any]:
        return self.request(
            "PUT",
            f"/credentials/{credential_id}/transfer",
            {"destinationProjectId": destination_project_id},
        )

    # --- Executions ---

    def list_executions(
        self,
        workflow_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        params = _drop_none(
            {"workflowId": workflow_id, "status": status, "limit": limit, "cursor": cursor}
        )
        return self.request("GET", "/executions", params=params or None)

    def get_execution(self, execution_id: str, include_data: bool = False) -> dict[str, Any]:
        params = {"includeData": "true"} if include_data else None
        return self.request("GET", f"/executions/{execution_id}", params=params)

    def delete_execution(self, execution_id: str) -> dict[str, Any]:
        return self.request("DELETE", f"/executions/{execution_id}")

    def is_available(self) -> bool:
        """True when the workflows endpoint answers; failures are logged, not raised."""
        try:
            self.request("GET", "/workflows", params={"limit": 1}, retry=False)
        except N8nApiError as e:
            logger.warning("n8n is not available: %s", e)
            return False
        return True


def extract_credential_id(response: dict[str, Any]) -> str | None:
    """n8n versions return the id as ``id``, ``credentialId`` or nested under ``data``."""
    data = response.get("data") if isinstance(response.get("data"), dict) else {}
    for candidate in (
        response.get("id"),
        response.get("credentialId"),
        data.get("id"),
        data.get("credentialId"),
    ):
        if candidate:
            return str(candidate)
    return None
