"""Outlook (Microsoft identity platform) OAuth2 service

Authorization-code flow and refresh-token grant against the Microsoft
identity token endpoint. Tokens are stored encrypted through
UserCredentialsRepository with provider 'outlook'.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import requests

from floworx import config
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.storage.user_credentials_repository import UserCredentialsRepository

logger = get_logger(__name__)

PROVIDER = "outlook"
AUTHORITY = "https://login.microsoftonline.com/common/oauth2/v2.0"
AUTHORIZE_URL = f"{AUTHORITY}/authorize"
TOKEN_URL = f"{AUTHORITY}/token"

OUTLOOK_SCOPES = [
    "offline_access",
    "https://graph.microsoft.com/Mail.ReadWrite",
    "https://graph.microsoft.com/Mail.Send",
    "https://graph.microsoft.com/MailboxSettings.ReadWrite",
    "https://graph.microsoft.com/User.Read",
]


class OutlookOAuthService:
    def __init__(
        self,
        credentials_repo: UserCredentialsRepository | None = None,
        session: requests.Session | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ):
        self.credentials_repo = credentials_repo or UserCredentialsRepository()
        self.session = session or requests.Session()
        self.client_id = client_id if client_id is not None else config.MICROSOFT_OAUTH_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else config.MICROSOFT_OAUTH_CLIENT_SECRET
        )

    def _require_client(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ValueError(
                "Microsoft OAuth client is not configured. "
                "Set MICROSOFT_OAUTH_CLIENT_ID and MICROSOFT_OAUTH_CLIENT_SECRET."
            )

    def get_authorization_url(
        self, redirect_uri: str, state: str, scopes: list[str] | None = None
    ) -> str:
        self._require_client()
        query = urlencode(
            {
                "client_id": self.client_id,
                "response_type": "code",
                "redirect_uri": redirect_uri,
                "response_mode": "query",
                "scope": " ".join(scopes or OUTLOOK_SCOPES),
                "state": state,
                "prompt": "consent",
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        self._require_client()
        payload = {"client_id": self.client_id, "client_secret": self.client_secret, **data}
        try:
            response = self.session.post(
                TOKEN_URL, data=payload, timeout=config.HTTP_TIMEOUT_SECONDS
            )
        except requests.RequestException as e:
            logger.error("Microsoft token endpoint unreachable: %s", e)
            raise ValueError(f"Token request failed: {e}") from e

        if response.status_code != 200:
            try:
                detail = response.json().get("error_description", response.text)
            except ValueError:
                detail = response.text
            logger.error("Microsoft token request rejected (%s): %s", response.status_code, detail)
            raise ValueError(f"Token request failed ({response.status_code}): {detail}")
        return response.json()

    def exchange_code_for_tokens(self, code: str, redirect_uri: str) -> dict[str, Any]:
        token = self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "scope": " ".join(OUTLOOK_SCOPES),
            }
        )
        counter("oauth.outlook.code_exchanged.count")
        log_event("oauth.code_exchanged", provider=PROVIDER)
        return token

    def store_user_credentials(self, user_id: str, token: dict[str, Any]) -> None:
        """
        Side Effects:
            - Writes encrypted tokens to the user_credentials table
        """
        expires_in = int(token.get("expires_in", 3600))
        self.credentials_repo.store_credentials(
            user_id=user_id,
            provider=PROVIDER,
            token_dict={
                "access_token": token.get("access_token"),
                "refresh_token": token.get("refresh_token"),
            },
            scopes=(token.get("scope") or " ".join(OUTLOOK_SCOPES)).split(),
            token_expiry=datetime.now(UTC) + timedelta(seconds=expires_in),
        )

    def refresh_access_token(self, user_id: str) -> str:
        """
        Raises:
            ValueError: No stored refresh token, or the refresh was rejected

        Side Effects:
            - Calls the Microsoft identity token endpoint
            - Stores the new tokens and updates last_refresh_at
        """
        creds = self.credentials_repo.get(user_id, PROVIDER, decrypt=True)
        refresh_token = (creds or {}).get("token_dict", {}).get("refresh_token")
        if not refresh_token:
            raise ValueError(f"No Outlook refresh token available for user: {user_id}")

        token = self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": " ".join(OUTLOOK_SCOPES),
            }
        )
        # Microsoft may omit the refresh token when it is unchanged
        token.setdefault("refresh_token", refresh_token)
        self.store_user_credentials(user_id, token)
        self.credentials_repo.update_refresh_timestamp(user_id, PROVIDER)

        counter("oauth.outlook.token_refreshed.count")
        log_event("oauth.token_refreshed", provider=PROVIDER, user_id=user_id)
        return token["access_token"]

    def get_access_token(self, user_id: str, auto_refresh: bool = True) -> str:
        """
        Raises:
            ValueError: If no credentials are stored for the user
        """
        creds = self.credentials_repo.get(user_id, PROVIDER, decrypt=True)
        if not creds:
            raise ValueError(f"No Outlook credentials found for user: {user_id}")
        if auto_refresh and self.credentials_repo.is_token_expired(user_id, PROVIDER):
            logger.info("Outlook token expired or expiring soon, refreshing for user: %s", user_id)
            return self.refresh_access_token(user_id)
        return creds["token_dict"]["access_token"]

    def get_refresh_token(self, user_id: str) -> str | None:
        creds = self.credentials_repo.get(user_id, PROVIDER, decrypt=True)
        if not creds:
            return None
        return creds["token_dict"].get("refresh_token")
