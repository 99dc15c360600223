"""Gmail OAuth2 authentication service

Handles the OAuth2 flow for Gmail label provisioning:
- Build the authorization URL from the configured Google OAuth client
- Exchange the authorization code for tokens
- Refresh expired tokens automatically
- Build an authenticated Gmail API service

SECURITY:
- Tokens stored encrypted via UserCredentialsRepository (provider 'gmail')
- Auto-refresh before expiry (5-minute buffer)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from floworx import config
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.storage.user_credentials_repository import UserCredentialsRepository

logger = get_logger(__name__)

PROVIDER = "gmail"
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.labels",  # Create labels
    "https://www.googleapis.com/auth/gmail.modify",  # Apply labels from the workflow
    "https://www.googleapis.com/auth/gmail.send",  # Send replies from the workflow
]


def _token_dict(credentials: Credentials) -> dict[str, Any]:
    return {
        "token": credentials.token,
        "refresh_token": credentials.refresh_token,
        "token_uri": credentials.token_uri,
        "client_id": credentials.client_id,
        "client_secret": credentials.client_secret,
        "scopes": list(credentials.scopes or []),
    }


class GmailOAuthService:
    """
    Gmail OAuth2 authentication for one FloWorx deployment.

    The OAuth client id/secret come from GOOGLE_OAUTH_CLIENT_ID and
    GOOGLE_OAUTH_CLIENT_SECRET; the same client is used when the deployer
    creates the n8n Gmail credential.
    """

    def __init__(
        self,
        credentials_repo: UserCredentialsRepository | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ):
        self.credentials_repo = credentials_repo or UserCredentialsRepository()
        self.client_id = client_id if client_id is not None else config.GOOGLE_OAUTH_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else config.GOOGLE_OAUTH_CLIENT_SECRET
        )

    def _client_config(self, redirect_uri: str) -> dict[str, Any]:
        if not self.client_id or not self.client_secret:
            raise ValueError(
                "Google OAuth client is not configured. "
                "Set GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET."
            )
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
                "redirect_uris": [redirect_uri],
            }
        }

    def initiate_oauth_flow(
        self,
        redirect_uri: str = "http://localhost:8080/",
        scopes: list[str] | None = None,
    ) -> tuple[str, Flow]:
        """
        Returns:
            Tuple of (authorization_url, flow_object)

        Raises:
            ValueError: If the OAuth client is not configured
        """
        flow = Flow.from_client_config(
            self._client_config(redirect_uri),
            scopes=scopes or GMAIL_SCOPES,
            redirect_uri=redirect_uri,
        )
        auth_url, _ = flow.authorization_url(
            access_type="offline",  # Get refresh token
            prompt="consent",  # Force consent screen to get refresh token
            include_granted_scopes="true",
        )
        logger.info("Generated Gmail OAuth authorization URL")
        return auth_url, flow

    def exchange_code_for_tokens(self, flow: Flow, authorization_response: str) -> dict[str, Any]:
        """
        Raises:
            ValueError: If token exchange fails
        """
        try:
            flow.fetch_token(authorization_response=authorization_response)
        except Exception as e:
            logger.error("Failed to exchange authorization code: %s", e)
            raise ValueError(f"Token exchange failed: {e}") from e

        token_dict = _token_dict(flow.credentials)
        counter("oauth.gmail.code_exchanged.count")
        log_event("oauth.code_exchanged", provider=PROVIDER, scopes=token_dict["scopes"])
        return token_dict

    def store_user_credentials(self, user_id: str, token_dict: dict[str, Any]) -> None:
        """
        Side Effects:
            - Writes encrypted tokens to the user_credentials table
        """
        expires_in = token_dict.get("expires_in", 3600)
        self.credentials_repo.store_credentials(
            user_id=user_id,
            provider=PROVIDER,
            token_dict=token_dict,
            scopes=token_dict.get("scopes") or GMAIL_SCOPES,
            token_expiry=datetime.now(UTC) + timedelta(seconds=expires_in),
        )

    def get_authenticated_credentials(
        self, user_id: str, auto_refresh: bool = True
    ) -> Credentials | None:
        """
        Returns:
            Google OAuth2 Credentials object or None if not found

        Raises:
            CredentialEncryptionError: If decryption fails
        """
        creds_data = self.credentials_repo.get(user_id, PROVIDER, decrypt=True)
        if not creds_data:
            logger.warning("No Gmail credentials found for user: %s", user_id)
            return None

        token_dict = creds_data["token_dict"]
        credentials = Credentials(
            token=token_dict.get("token"),
            refresh_token=token_dict.get("refresh_token"),
            token_uri=token_dict.get("token_uri") or GOOGLE_TOKEN_URI,
            client_id=token_dict.get("client_id") or self.client_id,
            client_secret=token_dict.get("client_secret") or self.client_secret,
            scopes=creds_data["scopes"],
        )

        if auto_refresh and self.credentials_repo.is_token_expired(user_id, PROVIDER):
            logger.info("Gmail token expired or expiring soon, refreshing for user: %s", user_id)
            credentials = self.refresh_credentials(user_id, credentials)

        return credentials

    def refresh_credentials(self, user_id: str, credentials: Credentials | None = None) -> Credentials:
        """
        Raises:
            ValueError: If no refresh token is stored or the refresh fails

        Side Effects:
            - Calls the Google token endpoint
            - Writes updated encrypted tokens and last_refresh_at
        """
        if credentials is None:
            credentials = self.get_authenticated_credentials(user_id, auto_refresh=False)
        if not credentials:
            raise ValueError(f"No credentials found for user: {user_id}")
        if not credentials.refresh_token:
            raise ValueError(f"No refresh token available for user: {user_id}")

        try:
            credentials.refresh(Request())
        except Exception as e:
            logger.error("Failed to refresh Gmail credentials for user %s: %s", user_id, e)
            raise ValueError(f"Token refresh failed: {e}") from e

        expiry = credentials.expiry
        if expiry is None:
            expiry = datetime.now(UTC) + timedelta(hours=1)
        elif expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=UTC)

        self.credentials_repo.store_credentials(
            user_id=user_id,
            provider=PROVIDER,
            token_dict=_token_dict(credentials),
            scopes=list(credentials.scopes or GMAIL_SCOPES),
            token_expiry=expiry,
        )
        self.credentials_repo.update_refresh_timestamp(user_id, PROVIDER)

        counter("oauth.gmail.token_refreshed.count")
        log_event("oauth.token_refreshed", provider=PROVIDER, user_id=user_id)
        return credentials

    def get_refresh_token(self, user_id: str) -> str | None:
        creds_data = self.credentials_repo.get(user_id, PROVIDER, decrypt=True)
        if not creds_data:
            return None
        return creds_data["token_dict"].get("refresh_token")

    def build_gmail_service(self, user_id: str, auto_refresh: bool = True) -> Any:
        """
        Returns:
            Authenticated Gmail API service (googleapiclient.discovery.Resource)

        Raises:
            ValueError: If no credentials found or service build fails
        """
        credentials = self.get_authenticated_credentials(user_id, auto_refresh=auto_refresh)
        if not credentials:
            raise ValueError(f"No credentials found for user: {user_id}")

        try:
            return build("gmail", "v1", credentials=credentials, cache_discovery=False)
        except Exception as e:
            logger.error("Failed to build Gmail service for user %s: %s", user_id, e)
            raise ValueError(f"Failed to build Gmail service: {e}") from e
