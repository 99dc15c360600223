"""Unit tests for the post-deployment activation check"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest

from floworx.observability.telemetry import get_counter
from floworx.storage.workflows import WorkflowRepository
from floworx.workflows.activation import (
    CHECKING,
    ERROR,
    FULLY_FUNCTIONAL,
    HAS_ISSUES,
    NO_WORKFLOW,
    WorkflowActivationChecker,
    _is_stale,
    check_functionality,
    ensure_workflow_active,
)
from floworx.workflows.n8n_client import N8nApiError, N8nClient

HEALTHY_WORKFLOW = {
    "id": "wf-1",
    "name": "acme-user1-workflow",
    "active": False,
    "nodes": [
        {"name": "Gmail Trigger", "type": "n8n-nodes-base.gmailTrigger"},
        {"name": "Parse", "type": "n8n-nodes-base.code"},
        {"name": "Classifier", "type": "@n8n/n8n-nodes-langchain.agent"},
    ],
    "connections": {"Gmail Trigger": {"main": [[{"node": "Parse", "type": "main", "index": 0}]]}},
}


@pytest.fixture
def n8n():
    client = Mock(spec=N8nClient)
    client.get_workflow.return_value = dict(HEALTHY_WORKFLOW)
    client.list_executions.return_value = {"data": []}
    return client


@pytest.fixture
def workflows(temp_db):
    repo = WorkflowRepository()
    repo.create("user-1", "wf-1", 1, {"name": "acme"})
    return repo


@pytest.fixture
def checker(n8n, workflows):
    return WorkflowActivationChecker(n8n=n8n, workflows=workflows)


def _step(result, name):
    return next(step for step in result["steps"] if step["step"] == name)


def test_check_functionality_healthy():
    result = check_functionality(HEALTHY_WORKFLOW)

    assert result["success"] is True
    assert result["stats"] == {
        "totalNodes": 3,
        "triggerNodes": 1,
        "processingNodes": 2,
        "connections": 1,
    }


def test_check_functionality_empty_workflow():
    result = check_functionality({})

    assert result["success"] is False
    assert result["issues"] == [
        "No nodes found in workflow",
        "No connections found in workflow",
        "No trigger nodes found",
        "No processing nodes found",
    ]


def test_inactive_workflow_is_activated(checker, n8n, workflows):
    result = checker.ensure_active("user-1", "wf-1")

    assert result["status"] == FULLY_FUNCTIONAL
    assert result["isActive"] is True
    assert result["isFunctional"] is True
    n8n.activate_workflow.assert_called_once_with("wf-1")
    assert [step["step"] for step in result["steps"]] == [
        "status_check",
        "activation",
        "functionality_check",
        "execution_test",
    ]
    assert _step(result, "execution_test")["status"] == "pending"

    row = workflows.get_active("user-1")
    assert row["is_functional"] is True
    assert row["issues"] == []


def test_already_active_workflow_is_not_reactivated(checker, n8n):
    n8n.get_workflow.return_value = {**HEALTHY_WORKFLOW, "active": True}

    result = checker.ensure_active("user-1", "wf-1")

    assert _step(result, "activation")["status"] == "already_active"
    n8n.activate_workflow.assert_not_called()


def test_structural_issues_are_stored(checker, n8n, workflows):
    n8n.get_workflow.return_value = {**HEALTHY_WORKFLOW, "connections": {}}

    result = checker.ensure_active("user-1", "wf-1")

    assert result["status"] == HAS_ISSUES
    assert result["isFunctional"] is False
    assert result["issues"] == ["Workflow functionality issues detected"]
    assert workflows.get_active("user-1")["issues"] == ["Workflow functionality issues detected"]


def test_status_check_failure(checker, n8n):
    n8n.get_workflow.side_effect = N8nApiError("not found", status_code=404)

    result = checker.ensure_active("user-1", "wf-1")

    assert result["status"] == "checking"
    assert result["issues"] == ["Failed to check workflow status"]
    assert _step(result, "status_check")["status"] == "failed"
    n8n.activate_workflow.assert_not_called()


def test_activation_failure(checker, n8n):
    n8n.activate_workflow.side_effect = N8nApiError("credentials invalid", status_code=400)

    result = checker.ensure_active("user-1", "wf-1")

    assert result["issues"] == ["Failed to activate workflow"]
    assert result["isActive"] is False


def test_unexpected_error_returns_error_status(checker, n8n):
    n8n.get_workflow.side_effect = RuntimeError("kaboom")

    result = checker.ensure_active("user-1", "wf-1")

    assert result["status"] == ERROR
    assert result["error"] == "kaboom"


def test_execution_summary(checker, n8n):
    n8n.list_executions.return_value = {
        "data": [
            {"id": "ex-3", "status": "running", "startedAt": "2026-10-01T10:00:00Z"},
            {"id": "ex-2", "status": "error"},
            {"id": "ex-1", "status": "success", "stoppedAt": "2026-10-01T09:00:00Z"},
        ]
    }

    execution = checker.test_execution("wf-1")

    assert execution["hasRecentExecutions"] is True
    assert execution["isExecuting"] is True
    assert execution["failedExecutions"] == 1
    assert execution["totalExecutions"] == 3
    assert execution["lastExecution"]["id"] == "ex-3"
    n8n.list_executions.assert_called_once_with("wf-1", limit=5)


def test_execution_lookup_failure_is_not_fatal(checker, n8n):
    n8n.list_executions.side_effect = N8nApiError("forbidden", status_code=403)

    execution = checker.test_execution("wf-1")

    assert execution["success"] is True
    assert execution["hasRecentExecutions"] is False


def test_ensure_workflow_active_uses_given_checker(checker):
    assert ensure_workflow_active("user-1", "wf-1", checker=checker)["status"] == FULLY_FUNCTIONAL


def _age_last_check(workflows, timestamp="2020-01-01 00:00:00"):
    workflows.execute("UPDATE workflows SET last_checked = ? WHERE user_id = ?", (timestamp, "user-1"))


def test_health_without_workflow(temp_db, n8n):
    checker = WorkflowActivationChecker(n8n=n8n, workflows=WorkflowRepository())

    health = checker.get_health_status("user-1")

    assert health["status"] == NO_WORKFLOW
    assert health["hasActiveWorkflow"] is False
    n8n.get_workflow.assert_not_called()


def test_recent_health_is_answered_from_stored_row(checker, n8n, workflows):
    workflows.update_health("user-1", "wf-1", True, [])

    health = checker.get_health_status("user-1")

    assert health["status"] == FULLY_FUNCTIONAL
    assert health["isFunctional"] is True
    assert health["workflowId"] == "wf-1"
    assert health["lastChecked"]
    n8n.get_workflow.assert_not_called()


def test_recent_unhealthy_row_reports_issues(checker, n8n, workflows):
    workflows.update_health("user-1", "wf-1", False, ["Workflow functionality issues detected"])

    health = checker.get_health_status("user-1")

    assert health["status"] == HAS_ISSUES
    assert health["issues"] == ["Workflow functionality issues detected"]
    n8n.get_workflow.assert_not_called()


def test_stale_health_is_rechecked(checker, n8n, workflows):
    _age_last_check(workflows)

    health = checker.get_health_status("user-1")

    assert health["status"] == FULLY_FUNCTIONAL
    assert health["isFunctional"] is True
    n8n.get_workflow.assert_called_once_with("wf-1")
    assert health["lastChecked"] != "2020-01-01 00:00:00"
    assert get_counter("activation.health_rechecked") == 1


def test_stale_health_with_unreachable_n8n(checker, n8n, workflows):
    _age_last_check(workflows)
    n8n.get_workflow.side_effect = N8nApiError("n8n GET /workflows/wf-1 skipped: n8n circuit open")

    health = checker.get_health_status("user-1")

    assert health["status"] == CHECKING
    assert health["issues"] == ["Failed to check workflow status"]
    assert workflows.get_active("user-1")["last_checked"] == "2020-01-01 00:00:00"


@pytest.mark.parametrize(
    "value,stale",
    [
        (None, True),
        ("", True),
        ("not a timestamp", True),
        ("2020-01-01 00:00:00", True),
        (datetime.now(UTC) - timedelta(hours=1), False),
        ((datetime.now(UTC) - timedelta(hours=1)).strftime("%Y-%m-%d %H:%M:%S"), False),
        ((datetime.now(UTC) - timedelta(hours=25)).isoformat(), True),
    ],
)
def test_is_stale(value, stale):
    assert _is_stale(value) is stale


def test_force_activation(checker, n8n):
    n8n.get_workflow.return_value = {**HEALTHY_WORKFLOW, "active": True}

    result = checker.force_activation("user-1")

    assert result["success"] is True
    assert result["status"] == FULLY_FUNCTIONAL
    n8n.get_workflow.assert_called_once_with("wf-1")


def test_force_activation_with_issues(checker, n8n):
    n8n.get_workflow.return_value = {**HEALTHY_WORKFLOW, "nodes": []}

    result = checker.force_activation("user-1")

    assert result["success"] is False
    assert result["status"] == HAS_ISSUES


def test_force_activation_without_workflow(temp_db, n8n):
    checker = WorkflowActivationChecker(n8n=n8n, workflows=WorkflowRepository())

    assert checker.force_activation("user-1") == {
        "success": False,
        "error": "No active workflow found for user",
    }
