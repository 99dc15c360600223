"""Business profile repository

One row per onboarded business: selected business types, team (managers and
suppliers), the onboarding client_config blob and the provisioned label map.
"""

from __future__ import annotations

import json
from typing import Any

from floworx.infrastructure.database import retry_on_db_lock
from floworx.observability.logging import get_logger
from floworx.storage import BaseRepository, loads_json

logger = get_logger(__name__)

_JSON_COLUMNS = {
    "business_types": list,
    "managers": list,
    "suppliers": list,
    "client_config": dict,
    "email_labels": dict,
}


class ProfileRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("profiles")

    def _row_to_profile(self, row: Any) -> dict[str, Any]:
        profile = dict(row)
        for column, factory in _JSON_COLUMNS.items():
            profile[column] = loads_json(profile.get(column), factory())
        return profile

    def get(self, user_id: str) -> dict[str, Any] | None:
        row = self.query_one("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        return self._row_to_profile(row) if row else None

    @retry_on_db_lock()
    def upsert(
        self,
        user_id: str,
        *,
        business_name: str | None = None,
        business_types: list[str] | None = None,
        managers: list[dict[str, Any]] | None = None,
        suppliers: list[dict[str, Any]] | None = None,
        client_config: dict[str, Any] | None = None,
        onboarding_step: str | None = None,
    ) -> dict[str, Any]:
        """
        Create the profile or update only the fields that were passed.

        Side Effects:
            - Inserts or updates a row in the profiles table
        """
        updates: dict[str, Any] = {}
        if business_name is not None:
            updates["business_name"] = business_name
        if business_types is not None:
            updates["business_types"] = json.dumps(business_types)
        if managers is not None:
            updates["managers"] = json.dumps(managers)
        if suppliers is not None:
            updates["suppliers"] = json.dumps(suppliers)
        if client_config is not None:
            updates["client_config"] = json.dumps(client_config)
        if onboarding_step is not None:
            updates["onboarding_step"] = onboarding_step

        if self.get(user_id) is None:
            columns = ["user_id", *updates.keys()]
            placeholders = ", ".join("?" for _ in columns)
            self.execute(
                f"INSERT INTO profiles ({', '.join(columns)}) VALUES ({placeholders})",
                (user_id, *updates.values()),
            )
            logger.info("Created profile for user: %s", user_id)
        elif updates:
            assignments = ", ".join(f"{column} = ?" for column in updates)
            self.execute(
                f"UPDATE profiles SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
                (*updates.values(), user_id),
            )
            logger.info("Updated profile for user: %s (%s)", user_id, ", ".join(updates))

        profile = self.get(user_id)
        assert profile is not None
        return profile

    @retry_on_db_lock()
    def update_email_labels(self, user_id: str, label_map: dict[str, str]) -> None:
        """
        Side Effects:
            - Overwrites profiles.email_labels for the user
        """
        self.execute(
            "UPDATE profiles SET email_labels = ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (json.dumps(label_map), user_id),
        )

    def get_team(self, user_id: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Return (managers, suppliers); empty lists when the profile is missing."""
        profile = self.get(user_id)
        if not profile:
            return [], []
        return profile["managers"], profile["suppliers"]
