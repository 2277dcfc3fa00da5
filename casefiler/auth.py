"""Session token and workspace lookups shared by the documents client."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import quote

from .config import Settings
from .exceptions import MissingToken, MissingWorkspace
from .storage import FallbackStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "sc_token"
USER_KEY = "sc_user_email"
ISSUED_AT_KEY = "sc_auth_issued_at"
WORKSPACE_HOST_KEY = "sc:workspaceHost"


def normalize_email(email: Optional[str]) -> str:
    value = (email or "").strip().lower()
    return value or "unknown@singlecase.local"


def normalize_host(host: Optional[str]) -> str:
    """Reduce a stored workspace URL to its bare lower-case host."""
    value = (host or "").strip().lower()
    if not value:
        return ""
    for scheme in ("https://", "http://"):
        if value.startswith(scheme):
            value = value[len(scheme):]
            break
    return value.split("/")[0]


class StoredTokenProvider:
    """Reads the SingleCase session mirrored into the shared store."""

    def __init__(self, store: FallbackStore, ttl_seconds: float = 8 * 60 * 60) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def _read(self) -> tuple[Optional[str], float]:
        token, issued_raw = await asyncio.gather(
            self.store.get(TOKEN_KEY),
            self.store.get(ISSUED_AT_KEY),
        )
        try:
            issued_at = float(issued_raw) if issued_raw else 0.0
        except ValueError:
            issued_at = 0.0
        return token, issued_at

    def _expired(self, issued_at: float) -> bool:
        # Stored in milliseconds since the epoch.
        age = time.time() - issued_at / 1000
        return not issued_at or age > self.ttl_seconds

    async def get_token(self) -> str:
        token, issued_at = await self._read()
        if not token:
            raise MissingToken()
        if self._expired(issued_at):
            raise MissingToken("Auth token expired; sign in again.")
        return token

    async def set_auth(self, token: str, email: str) -> None:
        issued_at = str(int(time.time() * 1000))
        await self.store.set(TOKEN_KEY, token)
        await self.store.set(USER_KEY, normalize_email(email))
        await self.store.set(ISSUED_AT_KEY, issued_at)

    async def clear(self) -> None:
        for key in (TOKEN_KEY, USER_KEY, ISSUED_AT_KEY):
            await self.store.remove(key)

    async def clear_if_expired(self) -> bool:
        token, issued_at = await self._read()
        if not token or not self._expired(issued_at):
            return False
        logger.info("Stored session expired; clearing it")
        await self.clear()
        return True


class WorkspaceResolver:
    """Derives the public API base URL from the stored workspace host."""

    def __init__(self, store: FallbackStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def resolve_host(self) -> str:
        stored = await self.store.get(WORKSPACE_HOST_KEY)
        return normalize_host(stored or self.settings.workspace_host or "")

    async def resolve_base_url(self) -> str:
        host = await self.resolve_host()
        if not host:
            raise MissingWorkspace()
        return (
            f"{self.settings.origin}/{self.settings.tenant_prefix}/"
            f"{quote(host, safe='')}/publicapi/v1"
        )

    async def set_host(self, host: str) -> None:
        await self.store.set(WORKSPACE_HOST_KEY, normalize_host(host))
