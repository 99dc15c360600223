"""Authenticated Gmail API client

Bridges GmailOAuthService with the label client: lazily builds the Gmail API
service for one user and rebuilds it after a manual credential refresh.
"""

from __future__ import annotations

from typing import Any

from googleapiclient.errors import HttpError

from floworx.gmail.oauth import GmailOAuthService
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import log_event

logger = get_logger(__name__)


class GmailClient:
    def __init__(self, user_id: str, oauth_service: GmailOAuthService | None = None):
        self.user_id = user_id
        self.oauth_service = oauth_service or GmailOAuthService()
        self._service = None

    @property
    def service(self) -> Any:
        """
        Raises:
            ValueError: If no credentials found or service build fails
        """
        if self._service is None:
            self._service = self.oauth_service.build_gmail_service(self.user_id)
        return self._service

    def get_profile(self) -> dict[str, Any]:
        """
        Returns:
            Profile dict with keys: emailAddress, messagesTotal, threadsTotal, historyId
        """
        try:
            return self.service.users().getProfile(userId="me").execute()
        except HttpError as e:
            logger.error("Failed to fetch Gmail profile: %s", e)
            log_event("gmail.get_profile.error", status=e.resp.status, user_id=self.user_id)
            raise

    def refresh_credentials(self) -> None:
        self.oauth_service.refresh_credentials(self.user_id)
        self._service = None
        logger.info("Credentials refreshed and service rebuilt for user: %s", self.user_id)


def get_gmail_client(user_id: str) -> GmailClient:
    return GmailClient(user_id)
