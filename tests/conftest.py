"""
Pytest configuration for FloWorx tests

Provides a throwaway SQLite database, an encryption key for the credential
repository, fake HTTP responses and telemetry resets.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest
from cryptography.fernet import Fernet

# floworx.api.app initializes the database when it is imported
os.environ.setdefault(
    "FLOWORX_DB_PATH", str(Path(tempfile.mkdtemp(prefix="floworx-tests-")) / "floworx.db")
)
os.environ.setdefault("FLOWORX_ENV", "development")

from floworx.infrastructure import database  # noqa: E402
from floworx.onboarding.models import OnboardingProfile  # noqa: E402
from floworx.onboarding.validation import build_client_data  # noqa: E402
from floworx.observability import telemetry  # noqa: E402


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Fresh database file with the full schema, used through the global pool"""
    db_path = tmp_path / "floworx.db"
    monkeypatch.setenv("FLOWORX_DB_PATH", str(db_path))
    database.reset_pool()
    database.init_database()
    yield db_path
    database.reset_pool()


@pytest.fixture
def encryption_key(monkeypatch):
    """Generate test encryption key"""
    key = Fernet.generate_key().decode()
    monkeypatch.setenv("FLOWORX_ENCRYPTION_KEY", key)
    return key


@pytest.fixture(autouse=True)
def reset_telemetry():
    telemetry.reset_counters()
    telemetry.reset_latencies()
    yield


@pytest.fixture
def make_response():
    """Factory for requests.Response stand-ins"""

    def factory(status_code=200, json_body=None, headers=None, reason="OK"):
        response = Mock()
        response.status_code = status_code
        response.reason = reason
        response.headers = headers or {}
        if json_body is None:
            response.text = ""
            response.content = b""
            response.json.side_effect = ValueError("No JSON object could be decoded")
        else:
            response.text = json.dumps(json_body)
            response.content = response.text.encode()
            response.json.return_value = json_body
        return response

    return factory


@pytest.fixture
def sample_profile_payload():
    """Onboarding payload as the frontend sends it (camelCase)"""
    return {
        "business": {
            "name": "Hot Tub Man Ltd.",
            "types": ["Pools & Spas", "HVAC"],
            "emailDomain": "hottubman.ca",
            "serviceArea": "Red Deer, AB",
            "timezone": "America/Edmonton",
            "currency": "CAD",
        },
        "contact": {"phone": "403-555-0101", "website": "https://hottubman.ca"},
        "rules": {
            "businessHours": {"mon_fri": "8AM-5PM", "sat": "9AM-1PM", "sun": "Closed"},
            "sla": "24 hours",
            "urgentKeywords": ["no heat"],
            "tone": "Friendly",
            "aiGuardrails": {"allowPricing": True},
        },
        "services": [
            {"name": "Hot tub repair", "pricingType": "hourly", "price": "125", "description": "On-site"},
            {"name": "Water care visit", "pricingType": "fixed", "price": "85"},
        ],
        "managers": [
            {"name": "Hailey", "email": "hailey@hottubman.ca", "role": "Service Manager"},
            {"name": "Jillian", "email": "jillian@hottubman.ca"},
        ],
        "suppliers": [
            {"name": "Strong Spas", "email": "orders@strongspas.com", "domains": ["strongspas.com"]},
        ],
        "signature": "Thanks,\nThe Hot Tub Man Team",
    }


@pytest.fixture
def sample_profile_row(sample_profile_payload):
    """ProfileRepository-shaped row built from the onboarding payload"""
    profile = OnboardingProfile.model_validate(sample_profile_payload)
    return {
        "user_id": "user-1",
        "business_name": profile.business.name,
        "business_types": profile.business.types,
        "managers": [m.model_dump(by_alias=True, exclude_none=True) for m in profile.managers],
        "suppliers": [s.model_dump(by_alias=True, exclude_none=True) for s in profile.suppliers],
        "client_config": profile.client_config(),
        "email_labels": {
            "URGENT": "Label_U",
            "MISC": "Label_M",
            "SALES/New Inquiries": "Label_S",
        },
    }


@pytest.fixture
def sample_client_data(sample_profile_row):
    """Client data for a Gmail business with an n8n credential"""
    return build_client_data(
        sample_profile_row, [{"provider": "gmail", "n8n_credential_id": "cred-gmail"}]
    )
