"""Pydantic models for the onboarding profile.

Fields are snake_case in Python and camelCase on the wire and in the stored
client_config JSON (``model_dump(by_alias=True)``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from floworx.onboarding.validation import (
    validate_business_types,
    validate_domain,
    validate_email,
    validate_team_limits,
)


class OnboardingModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Manager(OnboardingModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str | None = None
    role: str | None = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        return validate_email(v)


class Supplier(OnboardingModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str | None = None
    domains: list[str] = Field(default_factory=list)
    category: str | None = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        return validate_email(v)

    @field_validator("domains")
    @classmethod
    def check_domains(cls, v: list[str]) -> list[str]:
        return [domain for domain in (validate_domain(d) for d in v) if domain]


class Service(OnboardingModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    pricing_type: str | None = None  # "fixed", "hourly", "quote"
    price: str | float | None = None


class BusinessInfo(OnboardingModel):
    name: str = Field(..., min_length=1, max_length=200)
    types: list[str]
    email_domain: str | None = None
    service_area: str | None = None
    timezone: str | None = None
    currency: str = "USD"

    @field_validator("types")
    @classmethod
    def check_types(cls, v: list[str]) -> list[str]:
        return validate_business_types(v)

    @field_validator("email_domain")
    @classmethod
    def check_domain(cls, v: str | None) -> str | None:
        return validate_domain(v)


class ContactInfo(OnboardingModel):
    phone: str | None = None
    website: str | None = None
    primary_email: str | None = None

    @field_validator("primary_email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        return validate_email(v)


class AiGuardrails(OnboardingModel):
    allow_pricing: bool = False


class BusinessRules(OnboardingModel):
    business_hours: dict[str, str] = Field(
        default_factory=lambda: {"mon_fri": "8AM-5PM", "sat": "Closed", "sun": "Closed"}
    )
    sla: str | None = None
    holidays: list[str] = Field(default_factory=list)
    urgent_keywords: list[str] = Field(default_factory=list)
    escalation_rules: str | None = None
    tone: str | None = None
    ai_guardrails: AiGuardrails = Field(default_factory=AiGuardrails)
    phone_provider: str | None = None
    crm_provider: str | None = None

    @field_validator("business_hours")
    @classmethod
    def check_hours(cls, v: dict[str, str]) -> dict[str, str]:
        unknown = set(v) - {"mon_fri", "sat", "sun"}
        if unknown:
            raise ValueError(f"Unknown business hours keys: {', '.join(sorted(unknown))}")
        return v


class OnboardingProfile(OnboardingModel):
    """Everything a business enters during onboarding."""

    business: BusinessInfo
    contact: ContactInfo = Field(default_factory=ContactInfo)
    rules: BusinessRules = Field(default_factory=BusinessRules)
    services: list[Service] = Field(default_factory=list)
    managers: list[Manager] = Field(default_factory=list)
    suppliers: list[Supplier] = Field(default_factory=list)
    signature: str | None = Field(default=None, max_length=2000)
    voice_profile: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_team_limits(self) -> OnboardingProfile:
        validate_team_limits(self.managers, self.suppliers)
        return self

    def client_config(self) -> dict[str, Any]:
        """The JSON stored in profiles.client_config (team lists live in their own columns)."""
        return self.model_dump(by_alias=True, exclude={"managers", "suppliers"}, exclude_none=True)
