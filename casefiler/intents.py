"""Read, write and migrate "file this message to case X" markers."""

from __future__ import annotations

import logging
from typing import Optional

from .identity import first_real_key, is_fallback_key
from .models import FilingIntent
from .storage import FallbackStore

logger = logging.getLogger(__name__)

INTENT_PREFIX = "intent:"


def intent_key(item_key: str) -> str:
    return f"{INTENT_PREFIX}{item_key}"


class IntentRepository:
    """Filing intents stored per candidate item key."""

    def __init__(self, store: FallbackStore) -> None:
        self.store = store

    async def resolve(self, keys: list[str]) -> Optional[FilingIntent]:
        """Return the intent under the earliest key holding a well-formed record."""
        for item_key in keys:
            record = await self.store.get_json(intent_key(item_key))
            if not isinstance(record, dict):
                continue
            intent = FilingIntent.from_record(record, item_key)
            if not intent.case_id:
                logger.debug("Intent under %s has no case id; skipping", item_key)
                continue
            logger.info(
                "Intent found under %s: case=%s auto=%s mode=%s",
                item_key,
                intent.case_id,
                intent.auto_file_on_send,
                intent.filing_on_send or "-",
            )
            return intent

        logger.info("No intent found for any of %d keys", len(keys))
        return None

    async def save(self, item_key: str, intent: FilingIntent) -> None:
        await self.store.set_json(intent_key(item_key), intent.to_record())
        intent.resolved_under_key = item_key

    async def migrate(self, intent: FilingIntent, keys: list[str]) -> str:
        """
        Move an intent recorded under a fallback key to the real item key.

        Best-effort: on failure the fallback copy may survive, which is fine
        because ``resolve`` scans every candidate again on the next send.
        Returns the key the intent is known under afterwards.
        """
        from_key = intent.resolved_under_key
        if not is_fallback_key(from_key):
            return from_key

        to_key = first_real_key(keys)
        if not to_key:
            return from_key

        try:
            await self.store.set_json(intent_key(to_key), intent.to_record())
            await self.store.remove(intent_key(from_key))
        except Exception as exc:
            logger.warning("Intent migration %s -> %s failed (non-critical): %s", from_key, to_key, exc)
            return from_key

        logger.info("Migrated intent from %s to %s", from_key, to_key)
        intent.resolved_under_key = to_key
        return to_key

    async def remark_filed(self, intent: FilingIntent, document_id: str) -> None:
        """Remember the filed document so the next reply can build on it."""
        intent.base_case_id = intent.case_id
        intent.base_email_doc_id = document_id
        await self.store.set_json(intent_key(intent.resolved_under_key), intent.to_record())
