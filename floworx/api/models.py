"""Pydantic request/response models for the FloWorx API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from floworx.onboarding.models import OnboardingProfile
from floworx.storage.integrations import normalize_provider

SUPPORTED_PROVIDER_NAMES = ("gmail", "google", "outlook", "microsoft")


class ErrorResponse(BaseModel):
    detail: str
    error_count: int = 1
    invalid_fields: list[str] = []


class ProfileUpsertRequest(OnboardingProfile):
    onboarding_step: str | None = Field(default=None, max_length=50)


class IntegrationRequest(BaseModel):
    provider: str
    email: str | None = None

    @field_validator("provider")
    @classmethod
    def check_provider(cls, v: str) -> str:
        if not any(name in v.lower() for name in SUPPORTED_PROVIDER_NAMES):
            raise ValueError(f"Unsupported provider: {v}")
        return normalize_provider(v)


class ProvisionLabelsRequest(BaseModel):
    business_types: list[str] | None = Field(default=None, alias="businessTypes")


class SendTestMessageRequest(BaseModel):
    to: str | None = Field(default=None, max_length=254)


class ProfileResponse(BaseModel):
    user_id: str
    business_name: str | None
    business_types: list[str]
    managers: list[dict[str, Any]]
    suppliers: list[dict[str, Any]]
    client_config: dict[str, Any]
    email_labels: dict[str, str]
    onboarding_step: str | None
    integrations: list[dict[str, Any]] = []
    workflow: dict[str, Any] | None = None
