"""Unit tests for the SQLite repositories

Tests cover:
- Profile upsert (create, partial update, JSON columns)
- Integrations (connect, reactivation, active selection, provider aliases)
- Credential mappings
- Workflow rows (versions, archive, health) and deployment metadata
- Encrypted OAuth token storage
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from cryptography.fernet import Fernet

from floworx.infrastructure.database import get_db_connection, get_pool_stats, validate_schema
from floworx.storage.integrations import (
    CredentialMappingRepository,
    IntegrationRepository,
    normalize_provider,
)
from floworx.storage.profiles import ProfileRepository
from floworx.storage.user_credentials_repository import (
    CredentialEncryptionError,
    UserCredentialsRepository,
)
from floworx.storage.workflows import DeploymentMetadataRepository, WorkflowRepository


def test_schema_has_required_tables(temp_db):
    assert validate_schema() is True


def test_pool_stats_report_idle_pool(temp_db):
    with get_db_connection():
        stats = get_pool_stats()
        assert stats["in_use"] == 1

    stats = get_pool_stats()
    assert stats["in_use"] == 0
    assert stats["closed"] is False


def test_profile_created_with_defaults(temp_db):
    profile = ProfileRepository().upsert("user-1", business_name="Acme Pools")

    assert profile["user_id"] == "user-1"
    assert profile["business_name"] == "Acme Pools"
    assert profile["business_types"] == []
    assert profile["managers"] == []
    assert profile["client_config"] == {}
    assert profile["email_labels"] == {}


def test_profile_partial_update_keeps_other_fields(temp_db):
    repo = ProfileRepository()
    repo.upsert(
        "user-1",
        business_name="Acme Pools",
        business_types=["Pools & Spas"],
        managers=[{"name": "Hailey"}],
    )

    profile = repo.upsert("user-1", onboarding_step="team")

    assert profile["business_name"] == "Acme Pools"
    assert profile["business_types"] == ["Pools & Spas"]
    assert profile["managers"] == [{"name": "Hailey"}]
    assert profile["onboarding_step"] == "team"


def test_profile_email_labels_and_team(temp_db):
    repo = ProfileRepository()
    repo.upsert("user-1", managers=[{"name": "Hailey"}], suppliers=[{"name": "Strong Spas"}])
    repo.update_email_labels("user-1", {"BANKING": "Label_1"})

    assert repo.get("user-1")["email_labels"] == {"BANKING": "Label_1"}
    assert repo.get_team("user-1") == ([{"name": "Hailey"}], [{"name": "Strong Spas"}])
    assert repo.get_team("missing") == ([], [])
    assert repo.get("missing") is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("gmail", "gmail"),
        ("Google", "gmail"),
        ("outlook", "outlook"),
        ("Microsoft", "outlook"),
        ("microsoft-outlook", "outlook"),
        (None, "gmail"),
    ],
)
def test_normalize_provider(raw, expected):
    assert normalize_provider(raw) == expected


def test_integration_connect_and_reactivate(temp_db):
    repo = IntegrationRepository()
    repo.connect("user-1", "microsoft", "owner@acme.com")
    repo.disconnect("user-1", "outlook")
    assert repo.list_active("user-1") == []

    integration = repo.connect("user-1", "outlook")

    assert integration["provider"] == "outlook"
    assert integration["status"] == "active"
    assert integration["email"] == "owner@acme.com"


def test_get_active_prefers_integration_with_credential(temp_db):
    repo = IntegrationRepository()
    repo.connect("user-1", "gmail")
    repo.connect("user-1", "outlook")
    assert repo.get_active("user-1")["provider"] == "gmail"

    repo.set_credential_id("user-1", "outlook", "cred-9")

    active = repo.get_active("user-1")
    assert active["provider"] == "outlook"
    assert active["n8n_credential_id"] == "cred-9"


def test_get_active_none_without_integrations(temp_db):
    assert IntegrationRepository().get_active("user-1") is None


def test_credential_mapping_upsert(temp_db):
    repo = CredentialMappingRepository()
    repo.upsert("user-1", "gmail", "cred-1", "gmail-acme-user1")
    repo.upsert("user-1", "google", "cred-2", "gmail-acme-user1")

    mapping = repo.get("user-1", "gmail")
    assert mapping["n8n_credential_id"] == "cred-2"
    assert repo.get("user-1", "outlook") is None


def test_workflow_rows_and_health(temp_db):
    repo = WorkflowRepository()
    first = repo.create("user-1", "wf-1", 1, {"name": "v1"})
    repo.archive(first)
    repo.create("user-1", "wf-2", 2, {"name": "v2"})

    active = repo.get_active("user-1")
    assert active["n8n_workflow_id"] == "wf-2"
    assert active["version"] == 2
    assert active["workflow_json"] == {"name": "v2"}
    assert [row["status"] for row in repo.list_for_user("user-1")] == ["active", "archived"]

    repo.update_health("user-1", "wf-2", False, ["No trigger nodes found"])
    active = repo.get_active("user-1")
    assert active["is_functional"] is False
    assert active["issues"] == ["No trigger nodes found"]

    repo.update_deployment(active["id"], {"name": "v2b"})
    active = repo.get_active("user-1")
    assert active["workflow_json"] == {"name": "v2b"}
    assert active["issues"] == []


def test_deployment_metadata_latest(temp_db):
    repo = DeploymentMetadataRepository()
    repo.record("user-1", "wf-1", 1, "gmail", ["Pools & Spas"])
    repo.record("user-1", "wf-1", 1, "gmail", ["Pools & Spas", "HVAC"], {"isNew": False})

    latest = repo.latest("user-1")
    assert latest["business_types"] == ["Pools & Spas", "HVAC"]
    assert latest["metadata"] == {"isNew": False}
    assert repo.latest("user-2") is None


def test_user_credentials_roundtrip_is_encrypted(temp_db, encryption_key):
    repo = UserCredentialsRepository()
    expiry = datetime.now(UTC) + timedelta(hours=1)
    repo.store_credentials("user-1", "gmail", {"refresh_token": "rt-secret"}, ["scope-a"], expiry)

    raw = repo.get("user-1", "gmail", decrypt=False)
    assert "rt-secret" not in raw["encrypted_token_json"]

    stored = repo.get("user-1", "google")
    assert stored["token_dict"] == {"refresh_token": "rt-secret"}
    assert stored["scopes"] == ["scope-a"]
    assert repo.is_token_expired("user-1", "gmail") is False


def test_user_credentials_expiry_and_delete(temp_db, encryption_key):
    repo = UserCredentialsRepository()
    soon = datetime.now(UTC) + timedelta(seconds=60)
    repo.store_credentials("user-1", "outlook", {"access_token": "at"}, [], soon)

    assert repo.is_token_expired("user-1", "outlook") is True
    assert repo.is_token_expired("user-1", "gmail") is True

    repo.delete_credentials("user-1", "outlook")
    assert repo.get("user-1", "outlook") is None


def test_user_credentials_requires_key(temp_db, monkeypatch):
    monkeypatch.delenv("FLOWORX_ENCRYPTION_KEY", raising=False)
    with pytest.raises(ValueError, match="FLOWORX_ENCRYPTION_KEY"):
        UserCredentialsRepository()


def test_user_credentials_wrong_key_fails_to_decrypt(temp_db, monkeypatch, encryption_key):
    UserCredentialsRepository().store_credentials("user-1", "gmail", {"token": "t"}, [])

    monkeypatch.setenv("FLOWORX_ENCRYPTION_KEY", Fernet.generate_key().decode())
    with pytest.raises(CredentialEncryptionError):
        UserCredentialsRepository().get("user-1", "gmail")
