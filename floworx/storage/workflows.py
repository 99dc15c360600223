"""Deployed workflow rows and deployment history"""

from __future__ import annotations

import json
from typing import Any

from floworx.infrastructure.database import retry_on_db_lock
from floworx.observability.logging import get_logger
from floworx.storage import BaseRepository, loads_json

logger = get_logger(__name__)


class WorkflowRepository(BaseRepository):
    """
    At most one row per user has status 'active'. Replaced rows are kept
    with status 'archived'.
    """

    def __init__(self) -> None:
        super().__init__("workflows")

    def _row_to_workflow(self, row: Any) -> dict[str, Any]:
        workflow = dict(row)
        workflow["workflow_json"] = loads_json(workflow.get("workflow_json"), None)
        workflow["issues"] = loads_json(workflow.get("issues"), [])
        workflow["is_functional"] = bool(workflow["is_functional"])
        return workflow

    def get_active(self, user_id: str) -> dict[str, Any] | None:
        row = self.query_one(
            """
            SELECT * FROM workflows WHERE user_id = ? AND status = 'active'
            ORDER BY version DESC, id DESC LIMIT 1
            """,
            (user_id,),
        )
        return self._row_to_workflow(row) if row else None

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        rows = self.query_all(
            "SELECT * FROM workflows WHERE user_id = ? ORDER BY version DESC, id DESC",
            (user_id,),
        )
        return [self._row_to_workflow(row) for row in rows]

    @retry_on_db_lock()
    def create(
        self,
        user_id: str,
        n8n_workflow_id: str,
        version: int,
        workflow_json: dict[str, Any],
    ) -> int:
        """
        Side Effects:
            - Inserts an active workflow row
        """
        row_id = self.execute(
            """
            INSERT INTO workflows
                (user_id, n8n_workflow_id, version, status, workflow_json,
                 is_functional, issues, last_checked)
            VALUES (?, ?, ?, 'active', ?, 0, '[]', CURRENT_TIMESTAMP)
            """,
            (user_id, n8n_workflow_id, version, json.dumps(workflow_json)),
        )
        logger.info("Recorded workflow %s v%d for user: %s", n8n_workflow_id, version, user_id)
        assert row_id is not None
        return row_id

    @retry_on_db_lock()
    def update_deployment(self, row_id: int, workflow_json: dict[str, Any]) -> None:
        """
        Side Effects:
            - Replaces workflow_json and resets the health fields of the row
        """
        self.execute(
            """
            UPDATE workflows
            SET workflow_json = ?, status = 'active', is_functional = 0, issues = '[]',
                last_checked = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (json.dumps(workflow_json), row_id),
        )

    @retry_on_db_lock()
    def archive(self, row_id: int) -> None:
        self.execute(
            "UPDATE workflows SET status = 'archived', updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (row_id,),
        )

    @retry_on_db_lock()
    def update_health(
        self,
        user_id: str,
        n8n_workflow_id: str,
        is_functional: bool,
        issues: list[str],
    ) -> None:
        """
        Side Effects:
            - Updates is_functional, issues and last_checked on the matching row
        """
        self.execute(
            """
            UPDATE workflows
            SET is_functional = ?, issues = ?, last_checked = CURRENT_TIMESTAMP,
                updated_at = CURRENT_TIMESTAMP
            WHERE user_id = ? AND n8n_workflow_id = ?
            """,
            (int(is_functional), json.dumps(issues), user_id, n8n_workflow_id),
        )


class DeploymentMetadataRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("deployment_metadata")

    def record(
        self,
        user_id: str,
        n8n_workflow_id: str,
        version: int,
        provider: str,
        business_types: list[str],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Side Effects:
            - Appends a row to deployment_metadata
        """
        self.execute(
            """
            INSERT INTO deployment_metadata
                (user_id, n8n_workflow_id, version, provider, business_types, metadata)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                n8n_workflow_id,
                version,
                provider,
                json.dumps(business_types),
                json.dumps(metadata or {}),
            ),
        )

    def latest(self, user_id: str) -> dict[str, Any] | None:
        row = self.query_one(
            "SELECT * FROM deployment_metadata WHERE user_id = ? ORDER BY id DESC LIMIT 1",
            (user_id,),
        )
        if not row:
            return None
        result = dict(row)
        result["business_types"] = loads_json(result["business_types"], [])
        result["metadata"] = loads_json(result["metadata"], {})
        return result
