"""
Onboarding: profile models, input validation and client-data assembly.
"""

from floworx.onboarding.models import (
    BusinessInfo,
    BusinessRules,
    ContactInfo,
    Manager,
    OnboardingProfile,
    Service,
    Supplier,
)
from floworx.onboarding.validation import (
    OnboardingValidationError,
    build_client_data,
    validate_business_types,
    validate_domain,
    validate_email,
    validate_team_limits,
)

__all__ = [
    "BusinessInfo",
    "BusinessRules",
    "ContactInfo",
    "Manager",
    "OnboardingProfile",
    "Service",
    "Supplier",
    "OnboardingValidationError",
    "build_client_data",
    "validate_business_types",
    "validate_domain",
    "validate_email",
    "validate_team_limits",
]
