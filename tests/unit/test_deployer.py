"""Unit tests for workflow deployment to n8n"""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import requests

from floworx import config
from floworx.infrastructure.retry import CircuitBreaker
from floworx.observability.telemetry import get_counter
from floworx.storage.integrations import CredentialMappingRepository, IntegrationRepository
from floworx.storage.profiles import ProfileRepository
from floworx.storage.workflows import DeploymentMetadataRepository, WorkflowRepository
from floworx.workflows.deployer import (
    DeploymentError,
    WorkflowDeployer,
    clean_workflow_payload,
    client_short_id,
)
from floworx.workflows.n8n_client import N8nApiError, N8nClient

USER_ID = "user-1"
WORKFLOW_NAME = "hot-tub-man-ltd-user1-workflow"


@pytest.fixture
def n8n():
    client = Mock(spec=N8nClient)
    client.create_credential.return_value = {"id": "cred-9", "name": "gmail-hot-tub-man-ltd-user1"}
    client.create_workflow.return_value = {"id": "wf-1"}
    client.list_workflows.return_value = {"data": []}
    client.is_available.return_value = True
    return client


@pytest.fixture
def oauth_client(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_OAUTH_CLIENT_ID", "google-cid")
    monkeypatch.setattr(config, "GOOGLE_OAUTH_CLIENT_SECRET", "google-secret")


@pytest.fixture
def profiles(temp_db, sample_profile_row):
    repo = ProfileRepository()
    repo.upsert(
        USER_ID,
        business_name=sample_profile_row["business_name"],
        business_types=sample_profile_row["business_types"],
        managers=sample_profile_row["managers"],
        suppliers=sample_profile_row["suppliers"],
        client_config=sample_profile_row["client_config"],
    )
    repo.update_email_labels(USER_ID, sample_profile_row["email_labels"])
    return repo


@pytest.fixture
def integrations(temp_db):
    repo = IntegrationRepository()
    repo.connect(USER_ID, "gmail", email="info@hottubman.ca")
    return repo


@pytest.fixture
def deployer(n8n, profiles, integrations, oauth_client):
    return WorkflowDeployer(
        n8n=n8n,
        profiles=profiles,
        integrations=integrations,
        credential_mappings=CredentialMappingRepository(),
        workflows=WorkflowRepository(),
        deployments=DeploymentMetadataRepository(),
        refresh_token_lookup=lambda provider, user_id: "refresh-1",
        sleep_fn=lambda _: None,
    )


def test_client_short_id():
    assert client_short_id("user-1") == "user1"
    assert client_short_id("3f2a-9b7c-11ee") == "3f2a9"


def test_clean_workflow_payload_drops_extra_fields():
    workflow = {"name": "x", "nodes": [{"id": "n"}], "connections": {}, "active": True, "meta": {}}

    assert clean_workflow_payload(workflow, "acme-abc12-workflow") == {
        "name": "acme-abc12-workflow",
        "nodes": [{"id": "n"}],
        "connections": {},
        "settings": {"executionOrder": "v1"},
    }


def test_first_deploy_creates_credential_and_workflow(deployer, n8n, integrations):
    result = deployer.deploy(USER_ID)

    assert result == {
        "success": True,
        "workflowId": "wf-1",
        "version": 1,
        "provider": "gmail",
        "isNew": True,
    }

    name, credential_type, data, node_types = n8n.create_credential.call_args.args
    assert name == "gmail-hot-tub-man-ltd-user1"
    assert credential_type == "googleOAuth2Api"
    assert data["clientId"] == "google-cid"
    assert data["oauthTokenData"]["refresh_token"] == "refresh-1"
    assert "n8n-nodes-base.gmailTrigger" in node_types

    payload = n8n.create_workflow.call_args.args[0]
    assert payload["name"] == WORKFLOW_NAME
    assert set(payload) == {"name", "nodes", "connections", "settings"}
    n8n.activate_workflow.assert_called_once_with("wf-1")

    assert integrations.get(USER_ID, "gmail")["n8n_credential_id"] == "cred-9"
    assert CredentialMappingRepository().get(USER_ID, "gmail")["n8n_credential_name"] == name
    assert get_counter("deploy.credentials_created.gmail") == 1
    assert get_counter("deploy.succeeded") == 1


def test_first_deploy_records_workflow_and_metadata(deployer):
    deployer.deploy(USER_ID)

    row = WorkflowRepository().get_active(USER_ID)
    assert row["n8n_workflow_id"] == "wf-1"
    assert row["version"] == 1
    assert row["workflow_json"]["name"] == "Hot Tub Man Ltd. Gmail AI Email Automation"

    latest = DeploymentMetadataRepository().latest(USER_ID)
    assert latest["business_types"] == ["Pools & Spas", "HVAC"]
    assert latest["metadata"]["workflowName"] == WORKFLOW_NAME
    assert latest["metadata"]["credentialId"] == "cred-9"
    assert latest["metadata"]["compositionStrategy"] == "modular"


def test_redeploy_updates_in_place(deployer, n8n):
    deployer.deploy(USER_ID)
    n8n.reset_mock()

    result = deployer.deploy(USER_ID)

    assert result["workflowId"] == "wf-1"
    assert result["version"] == 1
    assert result["isNew"] is False
    n8n.create_credential.assert_not_called()
    n8n.create_workflow.assert_not_called()
    n8n.update_workflow.assert_called_once()
    n8n.deactivate_workflow.assert_called_once_with("wf-1")
    n8n.activate_workflow.assert_called_once_with("wf-1")
    assert len(WorkflowRepository().list_for_user(USER_ID)) == 1


def test_failed_update_falls_back_to_new_workflow(deployer, n8n):
    deployer.deploy(USER_ID)
    n8n.update_workflow.side_effect = N8nApiError("gone", status_code=404)
    n8n.create_workflow.return_value = {"id": "wf-2"}

    result = deployer.deploy(USER_ID)

    assert result["workflowId"] == "wf-2"
    assert result["version"] == 2
    assert result["isNew"] is True
    n8n.delete_workflow.assert_called_once_with("wf-1")
    assert get_counter("deploy.update_fallback") == 1

    rows = WorkflowRepository().list_for_user(USER_ID)
    assert [(r["n8n_workflow_id"], r["status"]) for r in rows] == [("wf-2", "active"), ("wf-1", "archived")]


def test_existing_credential_mapping_is_reused(deployer, n8n):
    CredentialMappingRepository().upsert(USER_ID, "gmail", "cred-existing", "gmail-old")

    deployer.deploy(USER_ID)

    n8n.create_credential.assert_not_called()
    assert DeploymentMetadataRepository().latest(USER_ID)["metadata"]["credentialId"] == "cred-existing"


def test_missing_refresh_token(deployer, n8n):
    deployer.refresh_token_lookup = lambda provider, user_id: None

    with pytest.raises(DeploymentError, match="No gmail refresh token"):
        deployer.deploy(USER_ID)
    n8n.create_workflow.assert_not_called()


def test_missing_oauth_client(deployer, monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_OAUTH_CLIENT_SECRET", "")

    with pytest.raises(DeploymentError, match="not configured"):
        deployer.deploy(USER_ID)


def test_missing_credential_id_in_response(deployer, n8n):
    n8n.create_credential.return_value = {"data": "unexpected"}

    with pytest.raises(DeploymentError, match="no id returned"):
        deployer.deploy(USER_ID)


def test_missing_profile(deployer):
    with pytest.raises(DeploymentError, match="No profile found"):
        deployer.deploy("user-unknown")


def test_n8n_failure_becomes_deployment_error(deployer, n8n):
    n8n.create_workflow.side_effect = N8nApiError("boom", status_code=500)

    with pytest.raises(DeploymentError, match="n8n request failed") as exc_info:
        deployer.deploy(USER_ID)

    assert isinstance(exc_info.value.__cause__, N8nApiError)
    assert get_counter("deploy.failed") == 1


def test_cleanup_duplicates(deployer, n8n):
    n8n.list_workflows.return_value = {
        "data": [
            {"id": "wf-1", "name": WORKFLOW_NAME, "active": True},
            {"id": "wf-old", "name": WORKFLOW_NAME, "active": True},
            {"id": "wf-older", "name": WORKFLOW_NAME, "active": False},
            {"id": "wf-other", "name": "someone-else-workflow", "active": True},
        ]
    }

    assert deployer.cleanup_duplicates(WORKFLOW_NAME, "wf-1") == 2
    n8n.deactivate_workflow.assert_called_once_with("wf-old")
    assert [c.args[0] for c in n8n.delete_workflow.call_args_list] == ["wf-old", "wf-older"]


def test_cleanup_duplicates_ignores_failures(deployer, n8n):
    n8n.list_workflows.side_effect = N8nApiError("down", status_code=503)
    assert deployer.cleanup_duplicates(WORKFLOW_NAME, "wf-1") == 0

    n8n.list_workflows.side_effect = None
    n8n.list_workflows.return_value = {"data": [{"id": "wf-old", "name": WORKFLOW_NAME}]}
    n8n.delete_workflow.side_effect = N8nApiError("locked", status_code=409)
    assert deployer.cleanup_duplicates(WORKFLOW_NAME, "wf-1") == 0


def test_check_only(deployer, n8n):
    assert deployer.deploy(USER_ID, check_only=True) == {"success": True, "available": True}
    n8n.create_workflow.assert_not_called()


def test_open_n8n_circuit_becomes_deployment_error(deployer):
    breaker = CircuitBreaker("n8n_test", fail_max=1, reset_timeout=60)
    breaker.record_failure()
    session = Mock(spec=requests.Session)
    deployer.n8n = N8nClient(base_url="http://n8n.test:5678", api_key="key-1", session=session, breaker=breaker)

    with pytest.raises(DeploymentError, match="circuit open"):
        deployer.deploy(USER_ID)

    session.request.assert_not_called()
    assert get_counter("deploy.failed") == 1
