"""
Gmail label operations used by the label provisioner.

Gmail has no real hierarchy: a nested label is a label whose name is the
full ``Parent/Child`` path. Creation of a label that already exists (409) is
treated as success and resolved to the existing label's id. The client also
sends the post-deployment test message.
"""

from __future__ import annotations

import base64
import time
from collections.abc import Callable
from email.mime.text import MIMEText
from typing import Any

from googleapiclient.errors import HttpError

from floworx.config import LABEL_CREATE_DELAY_SECONDS
from floworx.gmail.client import GmailClient
from floworx.infrastructure.retry import AdapterError, CircuitBreaker, CircuitOpenError, RetryPolicy
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class GmailApiError(AdapterError):
    pass


def _to_adapter_error(e: HttpError) -> GmailApiError:
    status = getattr(e.resp, "status", None)
    return GmailApiError(f"Gmail API error: {e}", int(status) if status is not None else None)


def _is_conflict(e: GmailApiError) -> bool:
    return e.status_code == 409 or "already exists" in str(e).lower()


class GmailLabelClient:
    provider = "gmail"

    def __init__(
        self,
        service: Any,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        create_delay: float = LABEL_CREATE_DELAY_SECONDS,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            service: Authenticated Gmail API service (googleapiclient Resource)
            create_delay: Seconds to pause after each label creation
        """
        self.service = service
        self.retry_policy = retry_policy or RetryPolicy("gmail_labels")
        self.breaker = breaker or CircuitBreaker("gmail_labels")
        self.create_delay = create_delay
        self.sleep_fn = sleep_fn

    @classmethod
    def for_user(cls, user_id: str) -> GmailLabelClient:
        return cls(GmailClient(user_id).service)

    def _execute(self, request_factory: Callable[[], Any], retry: bool = True) -> Any:
        def attempt() -> Any:
            try:
                return request_factory().execute()
            except HttpError as e:
                raise _to_adapter_error(e) from e

        try:
            if not retry:
                return self.breaker.call(attempt)
            return self.retry_policy.execute(lambda: self.breaker.call(attempt))
        except CircuitOpenError as e:
            raise GmailApiError(f"Gmail API unavailable: {e}") from e

    def list_labels(self) -> dict[str, str]:
        """Label name (full path) -> label id."""
        response = self._execute(lambda: self.service.users().labels().list(userId="me"))
        labels = response.get("labels", [])
        logger.debug("Listed %d Gmail labels", len(labels))
        return {label["name"]: label["id"] for label in labels}

    def create_label(
        self,
        path: str,
        parent_id: str | None = None,
        color: dict[str, str] | None = None,
    ) -> str:
        """
        Create a label and return its id.

        parent_id is accepted for interface parity with Outlook folders; Gmail
        nesting comes from the ``Parent/Child`` path alone.

        Side Effects:
            - Creates a label in the user's mailbox
            - Sleeps create_delay seconds after the call
        """
        body: dict[str, Any] = {
            "name": path,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        if color:
            body["color"] = {
                "backgroundColor": color.get("backgroundColor"),
                "textColor": color.get("textColor"),
            }

        try:
            created = self._execute(
                lambda: self.service.users().labels().create(userId="me", body=body)
            )
            label_id = created["id"]
            counter("gmail.labels_created")
        except GmailApiError as e:
            if _is_conflict(e):
                label_id = self._lookup_existing(path)
            elif e.status_code == 400 and color:
                # Colors outside Gmail's palette are rejected
                logger.warning("Gmail rejected color for %s, creating without color", path)
                return self.create_label(path, parent_id, None)
            else:
                log_event("gmail.create_label.error", label=path, status=e.status_code)
                raise
        finally:
            if self.create_delay:
                self.sleep_fn(self.create_delay)

        return label_id

    def _lookup_existing(self, path: str) -> str:
        existing = self.list_labels()
        if path not in existing:
            raise GmailApiError(f"Label {path} reported as existing but was not found", 409)
        logger.info("Gmail label already exists: %s", path)
        counter("gmail.labels_existing")
        return existing[path]

    def send_test_message(self, to: str, subject: str, body: str) -> str:
        """
        Send a plain-text message from the mailbox and return its Gmail id.

        Sent once; a failed send is not retried so the recipient never gets
        duplicates.

        Side Effects:
            - Sends an email from the user's Gmail account
        """
        message = MIMEText(body, "plain", "utf-8")
        message["To"] = to
        message["Subject"] = subject
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")

        sent = self._execute(
            lambda: self.service.users().messages().send(userId="me", body={"raw": raw}),
            retry=False,
        )
        counter("gmail.test_messages_sent")
        log_event("gmail.test_message_sent", message_id=sent.get("id"))
        return sent.get("id", "")
