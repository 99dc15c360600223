"""
Workflow deployment to n8n.

Deploying a user's workflow:
1. Resolve the mail provider from the active integration
2. Reuse the mapped n8n mail credential or create one from the stored
   refresh token
3. Inject the onboarding data into the provider template
4. Update the active n8n workflow in place (deactivate + activate so the
   trigger picks up new credentials), or create a new one when there is no
   active workflow or the update fails
5. Record the workflow row and deployment metadata
6. Remove older n8n workflows with the same name
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from floworx import config
from floworx.gmail.oauth import GmailOAuthService
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event, time_block
from floworx.onboarding.validation import build_client_data
from floworx.outlook.oauth import OutlookOAuthService
from floworx.storage.integrations import (
    CredentialMappingRepository,
    IntegrationRepository,
    normalize_provider,
)
from floworx.storage.profiles import ProfileRepository
from floworx.storage.workflows import DeploymentMetadataRepository, WorkflowRepository
from floworx.workflows.compositor import determine_composition_strategy
from floworx.workflows.injector import TemplateInjectionError, inject_onboarding_data, slugify
from floworx.workflows.n8n_client import N8nApiError, N8nClient, extract_credential_id

logger = get_logger(__name__)

REACTIVATE_DELAY_SECONDS = 1.0

CREDENTIAL_TYPES = {
    "gmail": ("googleOAuth2Api", ["n8n-nodes-base.gmail", "n8n-nodes-base.gmailTrigger"]),
    "outlook": (
        "microsoftOutlookOAuth2Api",
        ["n8n-nodes-base.microsoftOutlook", "n8n-nodes-base.microsoftOutlookTrigger"],
    ),
}


class DeploymentError(RuntimeError):
    pass


def client_short_id(user_id: str) -> str:
    """First five characters of the user id without dashes."""
    return str(user_id).replace("-", "")[:5]


def default_refresh_token_lookup(provider: str, user_id: str) -> str | None:
    if provider == "outlook":
        return OutlookOAuthService().get_refresh_token(user_id)
    return GmailOAuthService().get_refresh_token(user_id)


def _oauth_client(provider: str) -> tuple[str, str]:
    if provider == "outlook":
        return config.MICROSOFT_OAUTH_CLIENT_ID, config.MICROSOFT_OAUTH_CLIENT_SECRET
    return config.GOOGLE_OAUTH_CLIENT_ID, config.GOOGLE_OAUTH_CLIENT_SECRET


def clean_workflow_payload(workflow: dict[str, Any], name: str) -> dict[str, Any]:
    """Only the fields the n8n create/update endpoints accept."""
    return {
        "name": name,
        "nodes": workflow.get("nodes") or [],
        "connections": workflow.get("connections") or {},
        "settings": {"executionOrder": "v1"},
    }


class WorkflowDeployer:
    def __init__(
        self,
        n8n: N8nClient | None = None,
        profiles: ProfileRepository | None = None,
        integrations: IntegrationRepository | None = None,
        credential_mappings: CredentialMappingRepository | None = None,
        workflows: WorkflowRepository | None = None,
        deployments: DeploymentMetadataRepository | None = None,
        refresh_token_lookup: Callable[[str, str], str | None] = default_refresh_token_lookup,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.n8n = n8n or N8nClient()
        self.profiles = profiles or ProfileRepository()
        self.integrations = integrations or IntegrationRepository()
        self.credential_mappings = credential_mappings or CredentialMappingRepository()
        self.workflows = workflows or WorkflowRepository()
        self.deployments = deployments or DeploymentMetadataRepository()
        self.refresh_token_lookup = refresh_token_lookup
        self.sleep_fn = sleep_fn

    def check_availability(self) -> dict[str, Any]:
        available = self.n8n.is_available()
        return {"success": available, "available": available}

    def ensure_mail_credential(
        self, user_id: str, provider: str, integration: dict[str, Any] | None, business_name: str
    ) -> str:
        """
        n8n credential id for the user's mailbox, creating it when neither
        the integration nor the credential mapping has one.

        Raises:
            DeploymentError: No refresh token, OAuth client not configured,
                or n8n returned no credential id

        Side Effects:
            - May create an n8n credential
            - Upserts credential_mappings and integrations.n8n_credential_id
        """
        existing = (integration or {}).get("n8n_credential_id")
        if not existing:
            mapping = self.credential_mappings.get(user_id, provider)
            existing = mapping["n8n_credential_id"] if mapping else None
        if existing:
            logger.info("Using existing %s credential %s for user: %s", provider, existing, user_id)
            return existing

        refresh_token = self.refresh_token_lookup(provider, user_id)
        if not refresh_token:
            raise DeploymentError(
                f"No {provider} refresh token for user {user_id}; reconnect the mailbox"
            )
        client_id, client_secret = _oauth_client(provider)
        if not client_id or not client_secret:
            raise DeploymentError(f"{provider} OAuth client id/secret are not configured")

        name = f"{provider}-{slugify(business_name, 'client')}-{client_short_id(user_id)}"
        credential_type, node_types = CREDENTIAL_TYPES[provider]
        data: dict[str, Any] = {
            "clientId": client_id,
            "clientSecret": client_secret,
            "oauthTokenData": {"refresh_token": refresh_token, "token_type": "Bearer"},
        }
        if provider == "gmail":
            data.update({"sendAdditionalBodyProperties": False, "additionalBodyProperties": ""})

        created = self.n8n.create_credential(name, credential_type, data, node_types)
        credential_id = extract_credential_id(created)
        if not credential_id:
            logger.error("n8n returned no credential id for %s: %s", name, list(created))
            raise DeploymentError(f"Failed to create {provider} credential: no id returned by n8n")

        self.credential_mappings.upsert(user_id, provider, credential_id, name)
        if integration:
            self.integrations.set_credential_id(user_id, integration["provider"], credential_id)
        counter(f"deploy.credentials_created.{provider}")
        return credential_id

    def _update_existing(
        self, existing: dict[str, Any], payload: dict[str, Any]
    ) -> tuple[str, int, bool]:
        """(workflow id, version, is_new)"""
        old_id = existing["n8n_workflow_id"]
        try:
            self.n8n.update_workflow(old_id, payload)
            self.n8n.deactivate_workflow(old_id)
            self.sleep_fn(REACTIVATE_DELAY_SECONDS)
            self.n8n.activate_workflow(old_id)
            logger.info("Updated and reactivated workflow %s", old_id)
            return old_id, existing["version"], False
        except N8nApiError as e:
            logger.warning("Updating workflow %s failed, creating a new one: %s", old_id, e)
            counter("deploy.update_fallback")

        created = self.n8n.create_workflow(payload)
        new_id = str(created["id"])
        try:
            self.n8n.delete_workflow(old_id)
        except N8nApiError as e:
            logger.warning("Could not delete old workflow %s: %s", old_id, e)
        self.workflows.archive(existing["id"])
        self.n8n.activate_workflow(new_id)
        return new_id, existing["version"] + 1, True

    def cleanup_duplicates(self, name: str, keep_id: str) -> int:
        """
        Delete other n8n workflows named ``name``. Failures are logged and
        ignored.
        """
        removed = 0
        try:
            listed = self.n8n.list_workflows(name=name)
        except N8nApiError as e:
            logger.warning("Workflow cleanup skipped: %s", e)
            return 0

        for workflow in listed.get("data") or []:
            workflow_id = str(workflow.get("id"))
            if workflow.get("name") != name or workflow_id == keep_id:
                continue
            try:
                if workflow.get("active"):
                    self.n8n.deactivate_workflow(workflow_id)
                self.n8n.delete_workflow(workflow_id)
                removed += 1
            except N8nApiError as e:
                logger.warning("Failed to delete duplicate workflow %s: %s", workflow_id, e)
        if removed:
            log_event("deploy.duplicates_removed", name=name, removed=removed)
        return removed

    def deploy(self, user_id: str, check_only: bool = False) -> dict[str, Any]:
        """
        Deploy (or redeploy) the user's workflow.

        Returns:
            {"success", "workflowId", "version", "provider", "isNew"} or,
            with check_only, {"success", "available"}

        Raises:
            DeploymentError: Missing profile, credential problems or an n8n
                failure while creating/activating

        Side Effects:
            - Creates/updates/activates/deletes n8n workflows and credentials
            - Writes workflows, deployment_metadata, credential_mappings rows
        """
        if check_only:
            return self.check_availability()

        with time_block("deploy.latency"):
            try:
                return self._deploy(user_id)
            except N8nApiError as e:
                counter("deploy.failed")
                log_event("deploy.error", user_id=user_id, status=e.status_code)
                raise DeploymentError(f"n8n request failed: {e}") from e
            except TemplateInjectionError as e:
                counter("deploy.failed")
                raise DeploymentError(f"Workflow template could not be filled: {e}") from e

    def _deploy(self, user_id: str) -> dict[str, Any]:
        profile = self.profiles.get(user_id)
        if profile is None:
            raise DeploymentError(f"No profile found for user: {user_id}")

        integration = self.integrations.get_active(user_id)
        provider = normalize_provider(integration["provider"] if integration else "gmail")
        business_name = profile.get("business_name") or "Client"

        credential_id = self.ensure_mail_credential(user_id, provider, integration, business_name)

        client_data = build_client_data(profile, self.integrations.list_active(user_id))
        client_data["provider"] = provider
        client_data["integrations"][provider] = {"credentialId": credential_id}
        workflow = inject_onboarding_data(client_data)

        name = f"{slugify(business_name, 'client')}-{client_short_id(user_id)}-workflow"
        payload = clean_workflow_payload(workflow, name)

        existing = self.workflows.get_active(user_id)
        if existing and existing.get("n8n_workflow_id"):
            workflow_id, version, is_new = self._update_existing(existing, payload)
        else:
            created = self.n8n.create_workflow(payload)
            workflow_id = str(created["id"])
            self.n8n.activate_workflow(workflow_id)
            version = max((row["version"] for row in self.workflows.list_for_user(user_id)), default=0) + 1
            is_new = True

        if is_new:
            self.workflows.create(user_id, workflow_id, version, workflow)
        else:
            assert existing is not None
            self.workflows.update_deployment(existing["id"], workflow)

        business_types = client_data["business"]["types"]
        self.deployments.record(
            user_id,
            workflow_id,
            version,
            provider,
            business_types,
            {
                "workflowName": name,
                "credentialId": credential_id,
                "compositionStrategy": (
                    determine_composition_strategy(business_types) if len(business_types) > 1 else "single"
                ),
                "isNew": is_new,
            },
        )
        self.cleanup_duplicates(name, workflow_id)

        counter("deploy.succeeded")
        log_event(
            "deploy.completed",
            user_id=user_id,
            workflow_id=workflow_id,
            version=version,
            provider=provider,
            is_new=is_new,
        )
        return {
            "success": True,
            "workflowId": workflow_id,
            "version": version,
            "provider": provider,
            "isNew": is_new,
        }


def deploy_workflow(
    user_id: str, check_only: bool = False, deployer: WorkflowDeployer | None = None
) -> dict[str, Any]:
    return (deployer or WorkflowDeployer()).deploy(user_id, check_only=check_only)
