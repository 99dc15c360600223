"""
Label/folder provisioning for a connected mailbox.

Builds the merged label schema for a business, compares it with the labels
that already exist in Gmail or Outlook, creates whatever is missing (parents
before children, in provisioning order) and stores the resulting
path -> id map on the profile.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from floworx.config import CORE_FOLDER_THRESHOLD
from floworx.gmail.labels import GmailLabelClient
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event, time_block
from floworx.outlook.graph import OutlookGraphClient
from floworx.schemas.label_merger import merge_business_type_schemas
from floworx.schemas.labels_base import replace_dynamic_variables
from floworx.storage.integrations import IntegrationRepository, normalize_provider
from floworx.storage.profiles import ProfileRepository

logger = get_logger(__name__)

CORE_BUSINESS_FOLDERS = (
    "BANKING",
    "FORMSUB",
    "GOOGLE REVIEW",
    "MANAGER",
    "SALES",
    "SUPPLIERS",
    "SUPPORT",
    "URGENT",
    "MISC",
    "PHONE",
    "PROMO",
    "RECRUITMENT",
    "SOCIALMEDIA",
    "SEASONAL",
)


class LabelProvisioningError(RuntimeError):
    pass


class NoActiveIntegrationError(LabelProvisioningError):
    pass


class MailboxLabelClient(Protocol):
    provider: str

    def list_labels(self) -> dict[str, str]: ...

    def create_label(
        self, path: str, parent_id: str | None = None, color: dict[str, str] | None = None
    ) -> str: ...


@dataclass
class LabelSpec:
    path: str
    parent_path: str | None
    color: dict[str, str] | None


@dataclass
class ProvisioningResult:
    success: bool
    label_map: dict[str, str] = field(default_factory=dict)
    provider: str | None = None
    business_types: list[str] = field(default_factory=list)
    labels_created: int = 0
    labels_matched: int = 0
    total_labels: int = 0
    skipped: bool = False
    message: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def create_label_client(provider: str, user_id: str) -> MailboxLabelClient:
    """Authenticated label client for the user's mailbox."""
    if normalize_provider(provider) == "outlook":
        return OutlookGraphClient.for_user(user_id)

    return GmailLabelClient.for_user(user_id)


def flatten_label_schema(schema: dict[str, Any]) -> list[LabelSpec]:
    """
    Every label path in creation order: top-level labels follow rootOrder
    (labels missing from it go last), each parent before its children.
    """
    labels = {label["name"]: label for label in schema.get("labels", [])}
    ordered = [name for name in schema.get("rootOrder", []) if name in labels]
    ordered += [name for name in labels if name not in ordered]

    specs: list[LabelSpec] = []

    def walk(label: dict[str, Any], parent_path: str | None) -> None:
        path = f"{parent_path}/{label['name']}" if parent_path else label["name"]
        specs.append(LabelSpec(path, parent_path, label.get("color") if parent_path is None else None))
        for sub in label.get("sub") or []:
            walk(sub, path)

    for name in ordered:
        walk(labels[name], None)
    return specs


def core_folder_coverage(schema: dict[str, Any], existing: dict[str, str]) -> tuple[int, int]:
    """(present, expected) counts of core folders that this schema defines."""
    top_level = {label["name"].lower() for label in schema.get("labels", [])}
    expected = [name for name in CORE_BUSINESS_FOLDERS if name.lower() in top_level]
    existing_lower = {path.lower() for path in existing}
    present = [name for name in expected if name.lower() in existing_lower]
    return len(present), len(expected)


class LabelProvisioner:
    def __init__(
        self,
        profiles: ProfileRepository | None = None,
        integrations: IntegrationRepository | None = None,
        client_factory: Callable[[str, str], MailboxLabelClient] = create_label_client,
    ):
        self.profiles = profiles or ProfileRepository()
        self.integrations = integrations or IntegrationRepository()
        self.client_factory = client_factory

    def provision(self, user_id: str, business_types: list[str] | None = None) -> ProvisioningResult:
        """
        Provision labels for the user's active mailbox.

        Failures are reported through the result (success=False) rather
        than raised.

        Side Effects:
            - Reads the profile and integrations tables
            - Lists and creates labels/folders in the user's mailbox
            - Writes profiles.email_labels on success
        """
        business_types = list(business_types or [])
        try:
            with time_block("labels.provision.latency"):
                return self._provision(user_id, business_types)
        except Exception as e:
            logger.error("Label provisioning failed for user %s: %s", user_id, e)
            counter("labels.provision.failed")
            log_event("labels.provision.error", user_id=user_id, error_type=type(e).__name__)
            return ProvisioningResult(
                success=False, business_types=business_types, error=str(e), message=str(e)
            )

    def _provision(self, user_id: str, business_types: list[str]) -> ProvisioningResult:
        profile = self.profiles.get(user_id) or {}
        if not business_types:
            business_types = list(profile.get("business_types") or [])
        managers = profile.get("managers") or []
        suppliers = profile.get("suppliers") or []

        schema = merge_business_type_schemas(business_types, managers, suppliers)
        schema = replace_dynamic_variables(schema, managers, suppliers)

        integration = self.integrations.get_active(user_id)
        if integration is None:
            raise NoActiveIntegrationError("No active email integration found")
        provider = normalize_provider(integration["provider"])

        client = self.client_factory(provider, user_id)
        existing = client.list_labels()
        specs = flatten_label_schema(schema)
        existing_by_lower = {path.lower(): label_id for path, label_id in existing.items()}

        present, expected = core_folder_coverage(schema, existing)
        if present < expected * CORE_FOLDER_THRESHOLD:
            logger.info(
                "Only %d/%d core folders present for user %s, provisioning all labels",
                present,
                expected,
                user_id,
            )
            all_present = False
        else:
            all_present = all(spec.path.lower() in existing_by_lower for spec in specs)

        if all_present:
            label_map = {spec.path: existing_by_lower[spec.path.lower()] for spec in specs}
            self.profiles.update_email_labels(user_id, label_map)
            log_event("labels.provision.skipped", user_id=user_id, provider=provider, labels=len(label_map))
            return ProvisioningResult(
                success=True,
                label_map=label_map,
                provider=provider,
                business_types=business_types,
                labels_matched=len(label_map),
                total_labels=len(label_map),
                skipped=True,
                message="All folders already present, provisioning skipped",
            )

        label_map = {}
        created = matched = 0
        for spec in specs:
            existing_id = existing_by_lower.get(spec.path.lower())
            if existing_id:
                label_map[spec.path] = existing_id
                matched += 1
                continue
            parent_id = label_map.get(spec.parent_path) if spec.parent_path else None
            label_map[spec.path] = client.create_label(spec.path, parent_id=parent_id, color=spec.color)
            created += 1

        self.profiles.update_email_labels(user_id, label_map)
        counter("labels.created", created)
        log_event(
            "labels.provision.completed",
            user_id=user_id,
            provider=provider,
            created=created,
            matched=matched,
        )
        return ProvisioningResult(
            success=True,
            label_map=label_map,
            provider=provider,
            business_types=business_types,
            labels_created=created,
            labels_matched=matched,
            total_labels=created + matched,
            message=f"Created {created} new labels and matched {matched} existing labels",
        )


def provision_label_schema_for(
    user_id: str,
    business_types: list[str] | None = None,
    provisioner: LabelProvisioner | None = None,
) -> ProvisioningResult:
    return (provisioner or LabelProvisioner()).provision(user_id, business_types)
