"""Unit tests for onboarding models, validation and client data"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from floworx.onboarding.models import BusinessRules, OnboardingProfile, Supplier
from floworx.onboarding.validation import (
    OnboardingValidationError,
    build_client_data,
    validate_business_types,
    validate_domain,
    validate_email,
    validate_team_limits,
)


def test_validate_business_types_trims_and_dedupes():
    assert validate_business_types([" HVAC ", "hvac", "Pools & Spas", ""]) == ["HVAC", "Pools & Spas"]


@pytest.mark.parametrize("business_types", [[], None, ["", "  "]])
def test_validate_business_types_requires_one(business_types):
    with pytest.raises(OnboardingValidationError, match="At least one business type"):
        validate_business_types(business_types)


def test_validate_business_types_rejects_unknown():
    with pytest.raises(OnboardingValidationError, match="Underwater Welding"):
        validate_business_types(["HVAC", "Underwater Welding"])


@pytest.mark.parametrize(
    "value,expected",
    [
        ("  hailey@hottubman.ca ", "hailey@hottubman.ca"),
        ("", None),
        (None, None),
    ],
)
def test_validate_email(value, expected):
    assert validate_email(value) == expected


@pytest.mark.parametrize("value", ["hailey", "hailey@", "hailey@localhost", "a b@x.com"])
def test_validate_email_rejects(value):
    with pytest.raises(OnboardingValidationError):
        validate_email(value)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("@StrongSpas.com", "strongspas.com"),
        ("www.hottubman.ca", "hottubman.ca"),
        ("mail.supplier.co.uk", "mail.supplier.co.uk"),
        ("  ", None),
    ],
)
def test_validate_domain(value, expected):
    assert validate_domain(value) == expected


@pytest.mark.parametrize("value", ["localhost", "bad..com", "-bad.com", "x" * 250 + ".com"])
def test_validate_domain_rejects(value):
    with pytest.raises(OnboardingValidationError):
        validate_domain(value)


def test_validate_team_limits():
    validate_team_limits([object()] * 5, [object()] * 10)
    with pytest.raises(OnboardingValidationError, match="managers"):
        validate_team_limits([object()] * 6, [])
    with pytest.raises(OnboardingValidationError, match="suppliers"):
        validate_team_limits([], [object()] * 11)


def test_profile_parses_camel_case(sample_profile_payload):
    profile = OnboardingProfile.model_validate(sample_profile_payload)

    assert profile.business.email_domain == "hottubman.ca"
    assert profile.rules.ai_guardrails.allow_pricing is True
    assert profile.services[0].pricing_type == "hourly"
    assert profile.suppliers[0].domains == ["strongspas.com"]


def test_client_config_excludes_team(sample_profile_payload):
    config = OnboardingProfile.model_validate(sample_profile_payload).client_config()

    assert "managers" not in config
    assert "suppliers" not in config
    assert config["business"]["emailDomain"] == "hottubman.ca"
    assert config["rules"]["aiGuardrails"] == {"allowPricing": True}
    assert "voiceProfile" not in config


def test_profile_rejects_bad_input(sample_profile_payload):
    payload = {**sample_profile_payload, "business": {**sample_profile_payload["business"], "types": []}}
    with pytest.raises(ValidationError):
        OnboardingProfile.model_validate(payload)

    too_many = [{"name": f"Manager {i}"} for i in range(6)]
    with pytest.raises(ValidationError):
        OnboardingProfile.model_validate({**sample_profile_payload, "managers": too_many})


def test_supplier_domains_are_normalized():
    supplier = Supplier.model_validate({"name": "Strong Spas", "domains": ["@StrongSpas.com", " "]})
    assert supplier.domains == ["strongspas.com"]


def test_business_rules_defaults_and_hours():
    assert BusinessRules().business_hours["mon_fri"] == "8AM-5PM"
    with pytest.raises(ValidationError, match="Unknown business hours keys"):
        BusinessRules.model_validate({"businessHours": {"weekday": "9-5"}})


def test_build_client_data(sample_client_data):
    assert sample_client_data["id"] == "user-1"
    assert sample_client_data["provider"] == "gmail"
    assert sample_client_data["business"]["name"] == "Hot Tub Man Ltd."
    assert sample_client_data["business"]["type"] == "Pools & Spas"
    assert sample_client_data["business"]["currency"] == "CAD"
    assert sample_client_data["integrations"] == {"gmail": {"credentialId": "cred-gmail"}}
    assert sample_client_data["email_labels"]["URGENT"] == "Label_U"
    assert sample_client_data["managers"][0]["name"] == "Hailey"


def test_build_client_data_prefers_credentialed_integration(sample_profile_row):
    integrations = [
        {"provider": "gmail", "n8n_credential_id": None},
        {"provider": "microsoft", "n8n_credential_id": "cred-o"},
    ]

    client_data = build_client_data(sample_profile_row, integrations, label_map={"URGENT": "f1"})

    assert client_data["provider"] == "outlook"
    assert client_data["email_labels"] == {"URGENT": "f1"}


def test_build_client_data_minimal_profile():
    client_data = build_client_data({"user_id": "user-2", "business_name": "Acme"})

    assert client_data["provider"] == "gmail"
    assert client_data["business"] == {"name": "Acme", "types": [], "type": None, "currency": "USD"}
    assert client_data["version"] == 1
    assert client_data["integrations"] == {}
