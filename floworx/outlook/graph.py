"""
Microsoft Graph mail folder client.

Outlook folders are a real hierarchy: child folders are created under their
parent's id. Colors do not exist on folders, so label colors become master
categories instead. Calls go through the Graph retry policy (429/5xx with
Retry-After) and a 401 triggers one token refresh when a refresher is set.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import requests

from floworx.config import GRAPH_BASE_URL, HTTP_TIMEOUT_SECONDS, LABEL_CREATE_DELAY_SECONDS
from floworx.infrastructure.retry import CircuitBreaker, CircuitOpenError
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.outlook.errors import (
    REFRESH_TOKEN,
    GraphApiError,
    GraphRetryPolicy,
    error_from_response,
    graph_retry_policy,
)
from floworx.outlook.oauth import OutlookOAuthService

logger = get_logger(__name__)

# Graph master categories only accept preset colors
CATEGORY_PRESETS = {
    "#cc3a21": "preset0",
    "#ffad47": "preset1",
    "#a46a21": "preset2",
    "#fad165": "preset3",
    "#16a766": "preset4",
    "#43d692": "preset5",
    "#68dfa9": "preset6",
    "#6d9eeb": "preset7",
    "#a479e2": "preset8",
    "#f691b3": "preset9",
    "#999999": "preset12",
    "#4a86e8": "preset7",
    "#3c78d8": "preset7",
}
DEFAULT_CATEGORY_PRESET = "preset12"


def color_to_preset(color: dict[str, str] | None) -> str:
    background = ((color or {}).get("backgroundColor") or "").lower()
    return CATEGORY_PRESETS.get(background, DEFAULT_CATEGORY_PRESET)


class OutlookGraphClient:
    provider = "outlook"

    def __init__(
        self,
        access_token: str,
        session: requests.Session | None = None,
        token_refresher: Callable[[], str] | None = None,
        retry_policy: GraphRetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        base_url: str = GRAPH_BASE_URL,
        create_delay: float = LABEL_CREATE_DELAY_SECONDS,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            access_token: Graph bearer token
            token_refresher: Called once on a 401; returns a new access token
        """
        self.access_token = access_token
        self.session = session or requests.Session()
        self.token_refresher = token_refresher
        self.retry_policy = retry_policy or graph_retry_policy("graph_folders")
        self.breaker = breaker or CircuitBreaker("graph_folders")
        self.base_url = base_url.rstrip("/")
        self.create_delay = create_delay
        self.sleep_fn = sleep_fn

    @classmethod
    def for_user(cls, user_id: str) -> OutlookGraphClient:
        oauth = OutlookOAuthService()
        return cls(
            oauth.get_access_token(user_id),
            token_refresher=lambda: oauth.refresh_access_token(user_id),
        )

    def _send(self, method: str, path: str, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
                json=json_body,
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise GraphApiError(f"Graph request failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response(response)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> dict[str, Any]:
        """
        Raises:
            GraphApiError: Classified failure after retries
        """

        def attempt() -> dict[str, Any]:
            try:
                return self._send(method, path, json_body)
            except GraphApiError as e:
                if e.action != REFRESH_TOKEN or self.token_refresher is None:
                    raise
                logger.info("Graph token rejected, refreshing once")
                self.access_token = self.token_refresher()
                return self._send(method, path, json_body)

        try:
            if not retry:
                return self.breaker.call(attempt)
            return self.retry_policy.execute(lambda: self.breaker.call(attempt))
        except CircuitOpenError as e:
            raise GraphApiError(f"Graph request skipped: {e}") from e

    def _paged(self, path: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        response = self.request("GET", path)
        items.extend(response.get("value", []))
        next_link = response.get("@odata.nextLink")
        while next_link:
            response = self.request("GET", next_link.replace(self.base_url, ""))
            items.extend(response.get("value", []))
            next_link = response.get("@odata.nextLink")
        return items

    def list_top_level_folders(self) -> list[dict[str, Any]]:
        return self._paged("/me/mailFolders?$top=100")

    def list_child_folders(self, folder_id: str) -> list[dict[str, Any]]:
        return self._paged(f"/me/mailFolders/{folder_id}/childFolders?$top=100")

    def list_labels(self) -> dict[str, str]:
        """Every folder, keyed by its ``Parent/Child`` path."""
        paths: dict[str, str] = {}

        def walk(folders: list[dict[str, Any]], prefix: str) -> None:
            for folder in folders:
                path = f"{prefix}{folder['displayName']}"
                paths[path] = folder["id"]
                if folder.get("childFolderCount", 0) > 0:
                    walk(self.list_child_folders(folder["id"]), f"{path}/")

        walk(self.list_top_level_folders(), "")
        return paths

    def create_folder(self, display_name: str, parent_id: str | None = None) -> dict[str, Any]:
        path = f"/me/mailFolders/{parent_id}/childFolders" if parent_id else "/me/mailFolders"
        return self.request("POST", path, {"displayName": display_name})

    def _find_folder(self, display_name: str, parent_id: str | None) -> dict[str, Any] | None:
        folders = self.list_child_folders(parent_id) if parent_id else self.list_top_level_folders()
        for folder in folders:
            if folder["displayName"].lower() == display_name.lower():
                return folder
        return None

    def create_label(
        self,
        path: str,
        parent_id: str | None = None,
        color: dict[str, str] | None = None,
    ) -> str:
        """
        Create the last segment of path as a folder (under parent_id) and
        return its id. An existing folder with the same name is reused.

        Side Effects:
            - Creates a mail folder and, when a color is given, a master category
            - Sleeps create_delay seconds after the call
        """
        display_name = path.rsplit("/", 1)[-1]
        try:
            folder = self.create_folder(display_name, parent_id)
            counter("outlook.folders_created")
        except GraphApiError as e:
            if not e.is_folder_conflict:
                log_event("outlook.create_folder.error", folder=path, code=e.code, status=e.status_code)
                raise
            folder = self._find_folder(display_name, parent_id)
            if folder is None:
                raise
            logger.info("Outlook folder already exists: %s", path)
            counter("outlook.folders_existing")
        finally:
            if self.create_delay:
                self.sleep_fn(self.create_delay)

        if color and "/" not in path:
            self.ensure_category(display_name, color)
        return folder["id"]

    def list_categories(self) -> list[dict[str, Any]]:
        return self.request("GET", "/me/outlook/masterCategories").get("value", [])

    def ensure_category(self, name: str, color: dict[str, str] | None) -> dict[str, Any]:
        """Create or update a master category carrying the label color."""
        preset = color_to_preset(color)
        for category in self.list_categories():
            if category["displayName"].lower() == name.lower():
                if category.get("color") == preset:
                    return category
                return self.request(
                    "PATCH", f"/me/outlook/masterCategories/{category['id']}", {"color": preset}
                )
        return self.request(
            "POST", "/me/outlook/masterCategories", {"displayName": name, "color": preset}
        )

    def send_test_message(self, to: str, subject: str, body: str) -> None:
        """
        Send a plain-text message from the mailbox. Graph answers 202 with no
        body, so there is no message id.

        Side Effects:
            - Sends an email from the user's Outlook account and saves it to Sent Items
        """
        self.request(
            "POST",
            "/me/sendMail",
            {
                "message": {
                    "subject": subject,
                    "body": {"contentType": "Text", "content": body},
                    "toRecipients": [{"emailAddress": {"address": to}}],
                },
                "saveToSentItems": True,
            },
            retry=False,
        )
        counter("outlook.test_messages_sent")
        log_event("outlook.test_message_sent", to_domain=to.rsplit("@", 1)[-1])
