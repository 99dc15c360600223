"""User credentials repository for provider OAuth tokens

SECURITY:
- Tokens encrypted with Fernet (symmetric encryption)
- Encryption key must be set via FLOWORX_ENCRYPTION_KEY environment variable
- One row per (user_id, provider); provider is 'gmail' or 'outlook'
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime, timedelta
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from floworx.observability.logging import get_logger
from floworx.storage import BaseRepository
from floworx.storage.integrations import normalize_provider

logger = get_logger(__name__)


class CredentialEncryptionError(Exception):
    """Raised when credential encryption/decryption fails"""


class UserCredentialsRepository(BaseRepository):
    """
    Encrypted OAuth tokens for connected mailboxes.

    The refresh token stored here is what the deployer hands to n8n when it
    creates the mailbox credential.
    """

    def __init__(self) -> None:
        super().__init__("user_credentials")
        self._cipher = self._get_cipher()

    def _get_cipher(self) -> Fernet:
        """
        Raises:
            ValueError: If FLOWORX_ENCRYPTION_KEY is missing or malformed
        """
        encryption_key = os.getenv("FLOWORX_ENCRYPTION_KEY")

        if not encryption_key:
            raise ValueError(
                "FLOWORX_ENCRYPTION_KEY environment variable must be set. "
                "Generate one with: python -c "
                "'from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())'"
            )

        try:
            return Fernet(encryption_key.encode())
        except ValueError as e:
            raise ValueError(f"Invalid encryption key format: {e}") from e

    def _encrypt_token(self, token_dict: dict[str, Any]) -> str:
        try:
            return self._cipher.encrypt(json.dumps(token_dict).encode()).decode()
        except (TypeError, ValueError) as e:
            logger.error("Failed to encrypt token: %s", e)
            raise CredentialEncryptionError(f"Encryption failed: {e}") from e

    def _decrypt_token(self, encrypted_token: str) -> dict[str, Any]:
        try:
            return json.loads(self._cipher.decrypt(encrypted_token.encode()).decode())
        except (InvalidToken, ValueError) as e:
            logger.error("Failed to decrypt token: %s", e)
            raise CredentialEncryptionError(f"Decryption failed: {e!r}") from e

    def store_credentials(
        self,
        user_id: str,
        provider: str,
        token_dict: dict[str, Any],
        scopes: list[str],
        token_expiry: datetime | None = None,
    ) -> None:
        """
        Store or replace the tokens for one mailbox.

        Raises:
            CredentialEncryptionError: If encryption fails

        Side Effects:
            - Upserts a row in user_credentials
        """
        provider = normalize_provider(provider)
        self.execute(
            """
            INSERT INTO user_credentials (user_id, provider, encrypted_token_json, scopes, token_expiry)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                encrypted_token_json = excluded.encrypted_token_json,
                scopes = excluded.scopes,
                token_expiry = excluded.token_expiry,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                user_id,
                provider,
                self._encrypt_token(token_dict),
                json.dumps(scopes),
                token_expiry.isoformat() if token_expiry else None,
            ),
        )
        logger.info("Stored %s credentials for user: %s", provider, user_id)

    def get(self, user_id: str, provider: str, decrypt: bool = True) -> dict[str, Any] | None:
        """
        Returns:
            Dict with user_id, provider, scopes, token_expiry, timestamps and
            token_dict (decrypt=True) or encrypted_token_json (decrypt=False)

        Raises:
            CredentialEncryptionError: If decryption fails
        """
        row = self.query_one(
            "SELECT * FROM user_credentials WHERE user_id = ? AND provider = ?",
            (user_id, normalize_provider(provider)),
        )
        if not row:
            return None

        result: dict[str, Any] = {
            "user_id": row["user_id"],
            "provider": row["provider"],
            "scopes": json.loads(row["scopes"]),
            "token_expiry": datetime.fromisoformat(row["token_expiry"]) if row["token_expiry"] else None,
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "last_refresh_at": row["last_refresh_at"],
        }
        if decrypt:
            result["token_dict"] = self._decrypt_token(row["encrypted_token_json"])
        else:
            result["encrypted_token_json"] = row["encrypted_token_json"]
        return result

    def is_token_expired(self, user_id: str, provider: str, buffer_seconds: int = 300) -> bool:
        """True when the access token expires within buffer_seconds or has no expiry."""
        credentials = self.get(user_id, provider, decrypt=False)
        if not credentials or not credentials["token_expiry"]:
            return True

        expiry = credentials["token_expiry"]
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=UTC)
        return expiry <= datetime.now(UTC) + timedelta(seconds=buffer_seconds)

    def update_refresh_timestamp(self, user_id: str, provider: str) -> None:
        self.execute(
            """
            UPDATE user_credentials SET last_refresh_at = CURRENT_TIMESTAMP
            WHERE user_id = ? AND provider = ?
            """,
            (user_id, normalize_provider(provider)),
        )

    def delete_credentials(self, user_id: str, provider: str) -> None:
        """
        Side Effects:
            - Permanently removes the encrypted tokens for the mailbox
        """
        self.execute(
            f"DELETE FROM {self.table_name} WHERE user_id = ? AND provider = ?",
            (user_id, normalize_provider(provider)),
        )
        logger.info("Deleted %s credentials for user: %s", provider, user_id)
