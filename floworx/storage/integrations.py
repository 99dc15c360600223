"""Email provider integrations and their n8n credential mappings"""

from __future__ import annotations

from typing import Any

from floworx.infrastructure.database import retry_on_db_lock
from floworx.observability.logging import get_logger
from floworx.storage import BaseRepository

logger = get_logger(__name__)

SUPPORTED_PROVIDERS = ("gmail", "outlook")


def normalize_provider(provider: str | None) -> str:
    """outlook/microsoft variants map to 'outlook', everything else to 'gmail'."""
    value = (provider or "").lower()
    if "outlook" in value or "microsoft" in value:
        return "outlook"
    return "gmail"


class IntegrationRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("integrations")

    @retry_on_db_lock()
    def connect(self, user_id: str, provider: str, email: str | None = None) -> dict[str, Any]:
        """
        Record (or re-activate) a provider connection.

        Side Effects:
            - Upserts a row in the integrations table
        """
        provider = normalize_provider(provider)
        self.execute(
            """
            INSERT INTO integrations (user_id, provider, status, email)
            VALUES (?, ?, 'active', ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                status = 'active',
                email = COALESCE(excluded.email, integrations.email),
                updated_at = CURRENT_TIMESTAMP
            """,
            (user_id, provider, email),
        )
        logger.info("Connected %s integration for user: %s", provider, user_id)
        integration = self.get(user_id, provider)
        assert integration is not None
        return integration

    def get(self, user_id: str, provider: str) -> dict[str, Any] | None:
        row = self.query_one(
            "SELECT * FROM integrations WHERE user_id = ? AND provider = ?",
            (user_id, normalize_provider(provider)),
        )
        return dict(row) if row else None

    def list_active(self, user_id: str) -> list[dict[str, Any]]:
        rows = self.query_all(
            "SELECT * FROM integrations WHERE user_id = ? AND status = 'active' ORDER BY id",
            (user_id,),
        )
        return [dict(row) for row in rows]

    def get_active(self, user_id: str) -> dict[str, Any] | None:
        """
        The integration used for provisioning and deployment.

        An active integration that already has an n8n credential wins;
        otherwise the first active one.
        """
        active = self.list_active(user_id)
        if not active:
            return None
        for integration in active:
            if integration.get("n8n_credential_id"):
                return integration
        return active[0]

    @retry_on_db_lock()
    def set_credential_id(self, user_id: str, provider: str, credential_id: str) -> None:
        self.execute(
            """
            UPDATE integrations
            SET n8n_credential_id = ?, updated_at = CURRENT_TIMESTAMP
            WHERE user_id = ? AND provider = ?
            """,
            (credential_id, user_id, normalize_provider(provider)),
        )

    @retry_on_db_lock()
    def disconnect(self, user_id: str, provider: str) -> None:
        self.execute(
            """
            UPDATE integrations SET status = 'inactive', updated_at = CURRENT_TIMESTAMP
            WHERE user_id = ? AND provider = ?
            """,
            (user_id, normalize_provider(provider)),
        )
        logger.info("Disconnected %s integration for user: %s", provider, user_id)


class CredentialMappingRepository(BaseRepository):
    """user/provider -> n8n credential id"""

    def __init__(self) -> None:
        super().__init__("credential_mappings")

    def get(self, user_id: str, provider: str) -> dict[str, Any] | None:
        row = self.query_one(
            "SELECT * FROM credential_mappings WHERE user_id = ? AND provider = ?",
            (user_id, normalize_provider(provider)),
        )
        return dict(row) if row else None

    @retry_on_db_lock()
    def upsert(self, user_id: str, provider: str, credential_id: str, credential_name: str) -> None:
        """
        Side Effects:
            - Upserts a row in credential_mappings
        """
        self.execute(
            """
            INSERT INTO credential_mappings (user_id, provider, n8n_credential_id, n8n_credential_name)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                n8n_credential_id = excluded.n8n_credential_id,
                n8n_credential_name = excluded.n8n_credential_name,
                updated_at = CURRENT_TIMESTAMP
            """,
            (user_id, normalize_provider(provider), credential_id, credential_name),
        )
