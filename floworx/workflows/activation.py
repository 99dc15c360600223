"""
Post-deployment workflow health check.

``ensure_workflow_active`` walks a deployed workflow through status check,
activation, a structural functionality check and a look at recent
executions, then stores the outcome on the workflow row.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from floworx.config import N8N_EXECUTION_SAMPLE_LIMIT, WORKFLOW_HEALTH_MAX_AGE_HOURS
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.storage.workflows import WorkflowRepository
from floworx.workflows.n8n_client import N8nApiError, N8nClient

logger = get_logger(__name__)

FULLY_FUNCTIONAL = "fully_functional"
HAS_ISSUES = "has_issues"
ERROR = "error"
CHECKING = "checking"
NO_WORKFLOW = "no_workflow"

TRIGGER_MARKERS = ("trigger", "webhook")
PROCESSING_MARKERS = ("code", "function", "langchain", "openai", "agent", "httprequest")


def _step(name: str, status: str, details: dict[str, Any]) -> dict[str, Any]:
    return {"step": name, "status": status, "details": details}


def check_functionality(workflow: dict[str, Any]) -> dict[str, Any]:
    """Structural checks: nodes, connections, a trigger and a processing node."""
    nodes = workflow.get("nodes") or []
    connections = workflow.get("connections") or {}
    node_types = [str(node.get("type", "")).lower() for node in nodes]
    triggers = [t for t in node_types if any(marker in t for marker in TRIGGER_MARKERS)]
    processing = [t for t in node_types if any(marker in t for marker in PROCESSING_MARKERS)]

    issues = []
    if not nodes:
        issues.append("No nodes found in workflow")
    if not connections:
        issues.append("No connections found in workflow")
    if not triggers:
        issues.append("No trigger nodes found")
    if not processing:
        issues.append("No processing nodes found")

    return {
        "success": not issues,
        "issues": issues,
        "stats": {
            "totalNodes": len(nodes),
            "triggerNodes": len(triggers),
            "processingNodes": len(processing),
            "connections": len(connections),
        },
    }


class WorkflowActivationChecker:
    def __init__(self, n8n: N8nClient | None = None, workflows: WorkflowRepository | None = None):
        self.n8n = n8n or N8nClient()
        self.workflows = workflows or WorkflowRepository()

    def test_execution(self, workflow_id: str) -> dict[str, Any]:
        """
        Recent executions of the workflow. Never fails: a new workflow has
        no executions and an unreachable executions endpoint is not a
        deployment problem.
        """
        try:
            response = self.n8n.list_executions(workflow_id, limit=N8N_EXECUTION_SAMPLE_LIMIT)
        except N8nApiError as e:
            logger.info("Could not fetch executions for %s: %s", workflow_id, e)
            return {
                "success": True,
                "hasRecentExecutions": False,
                "message": "Could not fetch executions; workflow may be newly deployed",
            }

        executions = response.get("data") or []
        if not executions:
            return {
                "success": True,
                "hasRecentExecutions": False,
                "message": "No executions yet; waiting for trigger events",
            }

        last = executions[0]
        return {
            "success": True,
            "hasRecentExecutions": True,
            "isExecuting": last.get("status") == "running",
            "failedExecutions": sum(1 for e in executions if e.get("status") in ("error", "crashed")),
            "lastExecution": {
                "id": last.get("id"),
                "status": last.get("status"),
                "startedAt": last.get("startedAt"),
                "finishedAt": last.get("stoppedAt") or last.get("finishedAt"),
            },
            "totalExecutions": len(executions),
        }

    def ensure_active(self, user_id: str, workflow_id: str) -> dict[str, Any]:
        """
        Make sure the workflow is active and looks functional.

        Returns:
            {workflowId, userId, steps, status, isActive, isFunctional,
            issues}; status is fully_functional, has_issues or error, or
            checking when the status check or activation failed. checking
            is final for this call: nothing retries it, and the stored
            health fields are left untouched so the next check starts over.

        Side Effects:
            - May activate the workflow in n8n
            - Updates is_functional/issues/last_checked on the workflow row
        """
        result: dict[str, Any] = {
            "workflowId": workflow_id,
            "userId": user_id,
            "steps": [],
            "status": CHECKING,
            "isActive": False,
            "isFunctional": False,
            "issues": [],
        }
        try:
            return self._ensure_active(user_id, workflow_id, result)
        except Exception as e:
            logger.error("Activation check failed for workflow %s: %s", workflow_id, e)
            counter("activation.errors")
            return {
                "workflowId": workflow_id,
                "userId": user_id,
                "status": ERROR,
                "error": str(e),
                "isActive": False,
                "isFunctional": False,
            }

    def _ensure_active(self, user_id: str, workflow_id: str, result: dict[str, Any]) -> dict[str, Any]:
        steps = result["steps"]
        issues = result["issues"]

        try:
            workflow = self.n8n.get_workflow(workflow_id)
        except N8nApiError as e:
            steps.append(_step("status_check", "failed", {"error": str(e)}))
            issues.append("Failed to check workflow status")
            return result
        steps.append(
            _step(
                "status_check",
                "success",
                {
                    "isActive": workflow.get("active") is True,
                    "name": workflow.get("name"),
                    "nodes": len(workflow.get("nodes") or []),
                },
            )
        )

        if workflow.get("active") is True:
            steps.append(_step("activation", "already_active", {"message": "Workflow was already active"}))
        else:
            try:
                self.n8n.activate_workflow(workflow_id)
            except N8nApiError as e:
                steps.append(_step("activation", "failed", {"error": str(e)}))
                issues.append("Failed to activate workflow")
                return result
            steps.append(_step("activation", "success", {}))

        functionality = check_functionality(workflow)
        steps.append(
            _step("functionality_check", "success" if functionality["success"] else "failed", functionality)
        )
        if not functionality["success"]:
            issues.append("Workflow functionality issues detected")

        execution = self.test_execution(workflow_id)
        steps.append(
            _step("execution_test", "success" if execution.get("hasRecentExecutions") else "pending", execution)
        )

        is_functional = functionality["success"]
        self.workflows.update_health(user_id, workflow_id, is_functional, issues)

        result["status"] = FULLY_FUNCTIONAL if not issues else HAS_ISSUES
        result["isActive"] = True
        result["isFunctional"] = is_functional
        log_event(
            "activation.checked",
            user_id=user_id,
            workflow_id=workflow_id,
            status=result["status"],
            issues=len(issues),
        )
        return result

    def get_health_status(self, user_id: str) -> dict[str, Any]:
        """
        Health of the user's active workflow.

        A stored check younger than WORKFLOW_HEALTH_MAX_AGE_HOURS is answered
        from the workflow row; an older one runs ensure_active again.

        Side Effects:
            - Runs ensure_active (n8n calls, row update) when the stored check is stale
        """
        active = self.workflows.get_active(user_id)
        if active is None:
            return {
                "userId": user_id,
                "hasActiveWorkflow": False,
                "status": NO_WORKFLOW,
                "message": "No active workflow found",
            }

        workflow_id = active["n8n_workflow_id"]
        if _is_stale(active.get("last_checked")):
            counter("activation.health_rechecked")
            check = self.ensure_active(user_id, workflow_id)
            refreshed = self.workflows.get_active(user_id) or active
            return {
                "userId": user_id,
                "hasActiveWorkflow": True,
                "workflowId": workflow_id,
                "status": check["status"],
                "isFunctional": check.get("isFunctional", False),
                "issues": check.get("issues", []),
                "lastChecked": refreshed.get("last_checked"),
            }

        return {
            "userId": user_id,
            "hasActiveWorkflow": True,
            "workflowId": workflow_id,
            "status": FULLY_FUNCTIONAL if active["is_functional"] else HAS_ISSUES,
            "isFunctional": active["is_functional"],
            "issues": active["issues"],
            "lastChecked": active.get("last_checked"),
        }

    def force_activation(self, user_id: str) -> dict[str, Any]:
        """Run the full activation check now, whatever the stored state says."""
        active = self.workflows.get_active(user_id)
        if active is None:
            return {"success": False, "error": "No active workflow found for user"}

        logger.info("Forcing activation check for user %s", user_id)
        check = self.ensure_active(user_id, active["n8n_workflow_id"])
        return {"success": check["status"] == FULLY_FUNCTIONAL, **check}


def _is_stale(last_checked: Any) -> bool:
    if not last_checked:
        return True
    if isinstance(last_checked, datetime):
        checked_at = last_checked
    else:
        try:
            checked_at = datetime.fromisoformat(str(last_checked))
        except ValueError:
            logger.warning("Unreadable last_checked value: %s", last_checked)
            return True
    if checked_at.tzinfo is None:
        checked_at = checked_at.replace(tzinfo=UTC)
    return datetime.now(UTC) - checked_at >= timedelta(hours=WORKFLOW_HEALTH_MAX_AGE_HOURS)


def ensure_workflow_active(
    user_id: str, workflow_id: str, checker: WorkflowActivationChecker | None = None
) -> dict[str, Any]:
    return (checker or WorkflowActivationChecker()).ensure_active(user_id, workflow_id)
