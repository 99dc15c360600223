"""
Test message sent through the connected mailbox after deployment.

The message lands in the business's own inbox so the deployed workflow's
trigger has something to classify; the n8n execution log then shows whether
classification and labelling ran.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from floworx.labels.provisioner import create_label_client
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.storage.integrations import normalize_provider

logger = get_logger(__name__)

TEST_MESSAGE_SUBJECT = "Test Email for AI Classification"
TEST_MESSAGE_BODY = (
    "This is a test email to verify the AI classification system is working correctly."
)


class MailboxSender(Protocol):
    def send_test_message(self, to: str, subject: str, body: str) -> str | None: ...


class NoRecipientError(ValueError):
    """Neither a mailbox address nor a business email domain is known"""


@dataclass
class VerificationResult:
    success: bool
    provider: str
    to: str
    message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_recipient(integration: dict[str, Any] | None, client_config: dict[str, Any] | None) -> str:
    """
    The connected mailbox itself, else ``test@<emailDomain>``.

    Raises:
        NoRecipientError: No address can be derived
    """
    if integration and integration.get("email"):
        return integration["email"]
    domain = ((client_config or {}).get("business") or {}).get("emailDomain")
    if domain:
        return f"test@{domain}"
    raise NoRecipientError("No mailbox address or email domain to send the test message to")


def send_test_message(
    user_id: str,
    provider: str,
    to: str,
    client_factory: Callable[[str, str], Any] = create_label_client,
) -> VerificationResult:
    """
    Send the test message from the user's mailbox.

    Side Effects:
        - Sends one email through Gmail or Microsoft Graph

    Raises:
        AdapterError: The provider rejected the send or is unavailable
        ValueError: The user has no stored OAuth credentials
    """
    provider = normalize_provider(provider)
    sender: MailboxSender = client_factory(provider, user_id)
    message_id = sender.send_test_message(to, TEST_MESSAGE_SUBJECT, TEST_MESSAGE_BODY)

    counter(f"verification.test_messages_sent.{provider}")
    log_event("verification.test_message_sent", user_id=user_id, provider=provider)
    logger.info("Sent test message for %s via %s", user_id, provider)
    return VerificationResult(success=True, provider=provider, to=to, message_id=message_id or None)
