"""Microsoft Graph mail host: exposes a draft message to the send pipeline."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import msal
import requests
from requests import Response

from .config import Settings
from .models import Sender

logger = logging.getLogger(__name__)


class GraphMailHost:
    """Reads a draft through Graph and answers the ``MailHost`` accessors."""

    GRAPH_BASE = "https://graph.microsoft.com/v1.0"
    SELECT = (
        "id,subject,body,conversationId,createdDateTime,from,"
        "toRecipients,ccRecipients,bccRecipients"
    )

    def __init__(self, settings: Settings, message_id: str) -> None:
        if not settings.graph_client_id:
            raise ValueError("GRAPH_CLIENT_ID is required to read messages from Graph.")
        self.settings = settings
        self.message_id = message_id
        self.session = requests.Session()
        self.scopes = settings.graph_scopes
        self._message: Optional[dict[str, Any]] = None
        self._profile: Optional[dict[str, Any]] = None

        token_cache = msal.SerializableTokenCache()
        cache_path = settings.graph_token_cache
        if cache_path.exists():
            token_cache.deserialize(cache_path.read_text())
        self._token_cache = token_cache
        self.app = msal.PublicClientApplication(
            client_id=settings.graph_client_id,
            authority=settings.authority_url,
            token_cache=token_cache,
        )

    async def load(self) -> "GraphMailHost":
        """Fetch the message once; accessors below read the cached copy."""
        self._message = await asyncio.to_thread(self._fetch_message)
        return self

    @property
    def has_item(self) -> bool:
        return bool(self._message)

    @property
    def item_id(self) -> str:
        return str((self._message or {}).get("id") or "")

    @property
    def conversation_id(self) -> str:
        return str((self._message or {}).get("conversationId") or "")

    @property
    def date_time_created(self) -> str:
        return str((self._message or {}).get("createdDateTime") or "")

    @property
    def supports_async_item_id(self) -> bool:
        return True

    async def get_item_id(self) -> str:
        # Graph already hands back the immutable id; the requested id is the fallback.
        return self.item_id or self.message_id

    async def get_subject(self) -> str:
        return str((self._message or {}).get("subject") or "")

    async def get_body_text(self) -> str:
        body = (self._message or {}).get("body") or {}
        return str(body.get("content") or "")

    async def get_recipients(self) -> list[str]:
        message = self._message or {}
        seen: list[str] = []
        for field in ("toRecipients", "ccRecipients", "bccRecipients"):
            for recipient in message.get(field) or []:
                address = str((recipient.get("emailAddress") or {}).get("address") or "")
                address = address.strip().lower()
                if address and address not in seen:
                    seen.append(address)
        return seen

    async def get_sender(self) -> Sender:
        sender = ((self._message or {}).get("from") or {}).get("emailAddress") or {}
        if sender.get("address"):
            return Sender(email=sender["address"], name=sender.get("name") or "")
        # New drafts have no From yet; use the signed-in profile.
        profile = await asyncio.to_thread(self._fetch_profile)
        return Sender(
            email=str(profile.get("mail") or profile.get("userPrincipalName") or ""),
            name=str(profile.get("displayName") or ""),
        )

    async def notify(self, message: str) -> None:
        logger.info("Notification: %s", message)

    def _fetch_message(self) -> dict[str, Any]:
        url = f"{self.GRAPH_BASE}{self._messages_root()}/messages/{quote(self.message_id, safe='')}"
        # Ask Graph for a plain-text body.
        response = self._get(
            url,
            params={"$select": self.SELECT},
            headers={"Prefer": 'outlook.body-content-type="text"'},
        )
        return response.json()

    def _fetch_profile(self) -> dict[str, Any]:
        if self._profile is None:
            root = self._messages_root()
            self._profile = self._get(f"{self.GRAPH_BASE}{root}").json()
        return self._profile

    def _get(self, url: str, params: dict | None = None, headers: dict | None = None) -> Response:
        headers = {**(headers or {}), "Authorization": f"Bearer {self._acquire_token()}"}
        resp = self.session.get(url, headers=headers, params=params, timeout=30)
        if resp.status_code >= 400:
            logger.error("Graph request failed (%s): %s", resp.status_code, resp.text)
            resp.raise_for_status()
        return resp

    def _acquire_token(self) -> str:
        accounts = self.app.get_accounts()
        result = None
        if accounts:
            result = self.app.acquire_token_silent(self.scopes, account=accounts[0])
        if not result:
            flow = self.app.initiate_device_flow(scopes=self.scopes)
            if "user_code" not in flow:
                raise RuntimeError(f"Unable to start device code flow: {flow}")
            logger.info(flow.get("message"))
            result = self.app.acquire_token_by_device_flow(flow)
        if "access_token" not in result:
            raise RuntimeError(f"Unable to obtain Graph token: {result.get('error_description')}")
        self._persist_token_cache()
        return result["access_token"]

    def _persist_token_cache(self) -> None:
        if not self._token_cache.has_state_changed:
            return
        cache_path: Path = self.settings.graph_token_cache
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(self._token_cache.serialize())

    def _messages_root(self) -> str:
        if self.settings.graph_mailbox:
            return f"/users/{quote(self.settings.graph_mailbox)}"
        return "/me"
