"""
Profile endpoints: onboarding upsert, mailbox integrations, label
provisioning, generated prompts, workflow deployment and health, and the
post-deployment test message.

Endpoints that call Gmail, Graph or n8n are plain functions so FastAPI runs
them in its threadpool.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from floworx.api.middleware.auth import require_api_key
from floworx.api.models import (
    IntegrationRequest,
    ProfileResponse,
    ProfileUpsertRequest,
    ProvisionLabelsRequest,
    SendTestMessageRequest,
)
from floworx.infrastructure.retry import AdapterError
from floworx.labels.provisioner import LabelProvisioner
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import log_event
from floworx.onboarding.validation import OnboardingValidationError, build_client_data
from floworx.prompts.builder import generate_system_messages
from floworx.schemas.loader import SchemaNotFoundError
from floworx.storage.integrations import IntegrationRepository
from floworx.storage.profiles import ProfileRepository
from floworx.storage.workflows import WorkflowRepository
from floworx.utils.error_sanitizer import get_safe_error_detail
from floworx.workflows.activation import WorkflowActivationChecker
from floworx.workflows.deployer import DeploymentError, WorkflowDeployer
from floworx.workflows.verification import (
    NoRecipientError,
    VerificationResult,
    default_recipient,
    send_test_message,
)

router = APIRouter(prefix="/api/profiles", tags=["profiles"], dependencies=[Depends(require_api_key)])
logger = get_logger(__name__)


def get_profiles() -> ProfileRepository:
    return ProfileRepository()


def get_integrations() -> IntegrationRepository:
    return IntegrationRepository()


def get_workflows() -> WorkflowRepository:
    return WorkflowRepository()


def get_provisioner() -> LabelProvisioner:
    return LabelProvisioner()


def get_deployer() -> WorkflowDeployer:
    return WorkflowDeployer()


def get_activation_checker() -> WorkflowActivationChecker:
    return WorkflowActivationChecker()


def get_test_message_sender() -> Callable[[str, str, str], VerificationResult]:
    return send_test_message


def _require_profile(profiles: ProfileRepository, user_id: str) -> dict[str, Any]:
    profile = profiles.get(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


def _workflow_summary(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return {
        "n8nWorkflowId": row["n8n_workflow_id"],
        "version": row["version"],
        "status": row["status"],
        "isFunctional": row["is_functional"],
        "issues": row["issues"],
        "lastChecked": row.get("last_checked"),
    }


@router.put("/{user_id}", response_model=ProfileResponse)
async def upsert_profile(
    user_id: str,
    request: ProfileUpsertRequest,
    profiles: ProfileRepository = Depends(get_profiles),
    integrations: IntegrationRepository = Depends(get_integrations),
) -> ProfileResponse:
    """
    Save the onboarding profile.

    Side Effects:
        - Inserts or updates the profiles row
    """
    profile = profiles.upsert(
        user_id,
        business_name=request.business.name,
        business_types=request.business.types,
        managers=[m.model_dump(by_alias=True, exclude_none=True) for m in request.managers],
        suppliers=[s.model_dump(by_alias=True, exclude_none=True) for s in request.suppliers],
        client_config=request.client_config(),
        onboarding_step=request.onboarding_step,
    )
    log_event("profiles.upserted", user_id=user_id, business_types=request.business.types)
    return ProfileResponse(**profile, integrations=integrations.list_active(user_id))


@router.get("/{user_id}", response_model=ProfileResponse)
async def get_profile(
    user_id: str,
    profiles: ProfileRepository = Depends(get_profiles),
    integrations: IntegrationRepository = Depends(get_integrations),
    workflows: WorkflowRepository = Depends(get_workflows),
) -> ProfileResponse:
    profile = _require_profile(profiles, user_id)
    return ProfileResponse(
        **profile,
        integrations=integrations.list_active(user_id),
        workflow=_workflow_summary(workflows.get_active(user_id)),
    )


@router.post("/{user_id}/integrations")
async def connect_integration(
    user_id: str,
    request: IntegrationRequest,
    profiles: ProfileRepository = Depends(get_profiles),
    integrations: IntegrationRepository = Depends(get_integrations),
) -> dict[str, Any]:
    """
    Record a connected mailbox. OAuth tokens are stored separately by the
    OAuth flow.
    """
    _require_profile(profiles, user_id)
    integration = integrations.connect(user_id, request.provider, request.email)
    return {"success": True, "integration": integration}


@router.post("/{user_id}/labels/provision")
def provision_labels(
    user_id: str,
    request: ProvisionLabelsRequest | None = None,
    profiles: ProfileRepository = Depends(get_profiles),
    integrations: IntegrationRepository = Depends(get_integrations),
    provisioner: LabelProvisioner = Depends(get_provisioner),
) -> dict[str, Any]:
    _require_profile(profiles, user_id)
    if integrations.get_active(user_id) is None:
        raise HTTPException(status_code=409, detail="No active email integration found")

    result = provisioner.provision(user_id, request.business_types if request else None)
    if not result.success:
        raise HTTPException(
            status_code=502,
            detail=get_safe_error_detail(
                RuntimeError(result.error or "provisioning failed"), 502, "Label provisioning failed"
            ),
        )
    return result.to_dict()


@router.get("/{user_id}/prompts")
async def get_prompts(
    user_id: str,
    profiles: ProfileRepository = Depends(get_profiles),
    integrations: IntegrationRepository = Depends(get_integrations),
) -> dict[str, Any]:
    """Classifier and reply system messages for the saved profile."""
    profile = _require_profile(profiles, user_id)
    client_data = build_client_data(profile, integrations.list_active(user_id))
    try:
        return generate_system_messages(client_data)
    except (SchemaNotFoundError, OnboardingValidationError) as e:
        raise HTTPException(status_code=400, detail=get_safe_error_detail(e, 400)) from e


@router.post("/{user_id}/workflow/deploy")
def deploy(
    user_id: str,
    check_only: bool = Query(default=False, alias="checkOnly"),
    profiles: ProfileRepository = Depends(get_profiles),
    deployer: WorkflowDeployer = Depends(get_deployer),
) -> dict[str, Any]:
    """
    Deploy or redeploy the workflow; ``checkOnly=true`` only reports n8n
    availability.
    """
    if check_only:
        return deployer.deploy(user_id, check_only=True)

    _require_profile(profiles, user_id)
    try:
        return deployer.deploy(user_id)
    except DeploymentError as e:
        raise HTTPException(
            status_code=502, detail=get_safe_error_detail(e, 502, "Workflow deployment failed")
        ) from e


@router.post("/{user_id}/workflow/check")
def check_workflow(
    user_id: str,
    workflows: WorkflowRepository = Depends(get_workflows),
    checker: WorkflowActivationChecker = Depends(get_activation_checker),
) -> dict[str, Any]:
    active = workflows.get_active(user_id)
    if active is None:
        raise HTTPException(status_code=404, detail="No deployed workflow")
    return checker.ensure_active(user_id, active["n8n_workflow_id"])


@router.get("/{user_id}/workflow/health")
def workflow_health(
    user_id: str,
    checker: WorkflowActivationChecker = Depends(get_activation_checker),
) -> dict[str, Any]:
    """Stored workflow health, re-checked against n8n once it is a day old."""
    return checker.get_health_status(user_id)


@router.post("/{user_id}/workflow/activate")
def force_activation(
    user_id: str,
    workflows: WorkflowRepository = Depends(get_workflows),
    checker: WorkflowActivationChecker = Depends(get_activation_checker),
) -> dict[str, Any]:
    if workflows.get_active(user_id) is None:
        raise HTTPException(status_code=404, detail="No deployed workflow")
    return checker.force_activation(user_id)


@router.post("/{user_id}/test-message")
def send_workflow_test_message(
    user_id: str,
    request: SendTestMessageRequest | None = None,
    profiles: ProfileRepository = Depends(get_profiles),
    integrations: IntegrationRepository = Depends(get_integrations),
    sender: Callable[[str, str, str], VerificationResult] = Depends(get_test_message_sender),
) -> dict[str, Any]:
    """
    Send a test email through the connected mailbox so the deployed
    workflow has a message to classify.

    Side Effects:
        - Sends one email from the user's Gmail or Outlook account
    """
    profile = _require_profile(profiles, user_id)
    integration = integrations.get_active(user_id)
    if integration is None:
        raise HTTPException(status_code=409, detail="No active email integration found")

    try:
        to = (request.to if request else None) or default_recipient(
            integration, profile.get("client_config")
        )
    except NoRecipientError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        result = sender(user_id, integration["provider"], to)
    except (AdapterError, ValueError) as e:
        raise HTTPException(
            status_code=502, detail=get_safe_error_detail(e, 502, "Test message failed")
        ) from e
    return result.to_dict()
