"""
Onboarding input validation and client-data assembly.

Validation helpers raise OnboardingValidationError (a ValueError, so
pydantic validators can call them directly). ``build_client_data`` turns a
stored profile into the shape consumed by prompt generation and workflow
injection.
"""

from __future__ import annotations

import re
from typing import Any

from floworx.config import MAX_MANAGERS, MAX_SUPPLIERS
from floworx.observability.logging import get_logger
from floworx.schemas.loader import is_business_type_supported
from floworx.storage.integrations import normalize_provider

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$")
DOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)+$")
MAX_DOMAIN_LENGTH = 253  # DNS limit
MAX_EMAIL_LENGTH = 254


class OnboardingValidationError(ValueError):
    """Raised when onboarding input is rejected"""


def validate_business_types(business_types: list[str] | None) -> list[str]:
    """
    Trimmed, de-duplicated business types in the order given.

    Raises:
        OnboardingValidationError: Empty list or an unsupported type
    """
    cleaned: list[str] = []
    for business_type in business_types or []:
        name = (business_type or "").strip()
        if name and name.lower() not in {existing.lower() for existing in cleaned}:
            cleaned.append(name)

    if not cleaned:
        raise OnboardingValidationError("At least one business type is required")

    unsupported = [name for name in cleaned if not is_business_type_supported(name)]
    if unsupported:
        raise OnboardingValidationError(f"Unsupported business types: {', '.join(unsupported)}")
    return cleaned


def validate_email(email: str | None) -> str | None:
    """
    Raises:
        OnboardingValidationError: Malformed address
    """
    if email is None:
        return None
    email = email.strip()
    if not email:
        return None
    if len(email) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(email):
        raise OnboardingValidationError(f"Invalid email address: {email}")
    return email


def validate_domain(domain: str | None) -> str | None:
    """
    Lower-cased bare domain. A leading ``@`` or ``www.`` is dropped.

    Raises:
        OnboardingValidationError: Malformed domain
    """
    if domain is None:
        return None
    domain = domain.strip().lower().lstrip("@")
    if domain.startswith("www."):
        domain = domain[4:]
    if not domain:
        return None
    if len(domain) > MAX_DOMAIN_LENGTH:
        raise OnboardingValidationError(f"Domain exceeds maximum length of {MAX_DOMAIN_LENGTH}")
    if ".." in domain or not DOMAIN_PATTERN.match(domain):
        raise OnboardingValidationError(f"Invalid domain: {domain}")
    return domain


def validate_team_limits(managers: list[Any], suppliers: list[Any]) -> None:
    """
    The label schema has MAX_MANAGERS manager and MAX_SUPPLIERS supplier slots.

    Raises:
        OnboardingValidationError: Too many managers or suppliers
    """
    if len(managers) > MAX_MANAGERS:
        raise OnboardingValidationError(f"At most {MAX_MANAGERS} managers are supported")
    if len(suppliers) > MAX_SUPPLIERS:
        raise OnboardingValidationError(f"At most {MAX_SUPPLIERS} suppliers are supported")


def build_client_data(
    profile: dict[str, Any],
    integrations: list[dict[str, Any]] | None = None,
    label_map: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Shape a stored profile into the client data used for prompts and
    workflow injection.

    Args:
        profile: ProfileRepository row (JSON columns already decoded)
        integrations: Active integration rows; the first one with an n8n
            credential decides the provider
        label_map: Label path -> id; defaults to the profile's email_labels

    Returns:
        Dict with id, version, provider, business, contact, services, rules,
        signature, managers, suppliers, email_labels, integrations and
        voiceProfile
    """
    config = profile.get("client_config") or {}
    business_config = config.get("business") or {}
    integrations = integrations or []

    provider = "gmail"
    credentialed = [row for row in integrations if row.get("n8n_credential_id")]
    if credentialed or integrations:
        provider = normalize_provider((credentialed or integrations)[0].get("provider"))

    business_types = list(profile.get("business_types") or business_config.get("types") or [])
    business = {
        **business_config,
        "name": profile.get("business_name") or business_config.get("name") or "",
        "types": business_types,
        "type": business_types[0] if business_types else None,
        "currency": business_config.get("currency") or "USD",
    }

    return {
        "id": profile.get("user_id"),
        "version": profile.get("version") or config.get("version") or 1,
        "provider": provider,
        "business": business,
        "contact": config.get("contact") or {},
        "services": config.get("services") or [],
        "rules": config.get("rules") or {},
        "signature": config.get("signature"),
        "managers": profile.get("managers") or [],
        "suppliers": profile.get("suppliers") or [],
        "email_labels": label_map if label_map is not None else profile.get("email_labels") or {},
        "integrations": {
            normalize_provider(row.get("provider")): {"credentialId": row.get("n8n_credential_id")}
            for row in integrations
        },
        "voiceProfile": config.get("voiceProfile"),
    }
