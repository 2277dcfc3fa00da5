"""Remember which conversations or subjects were already filed."""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from .models import FiledEmailCacheEntry
from .storage import FallbackStore

logger = logging.getLogger(__name__)

CONVERSATION_PREFIX = "filed:conv:"
SUBJECT_PREFIX = "filed:subj:"


def normalize_cache_subject(subject: str) -> str:
    return re.sub(r"\s+", " ", (subject or "").strip().lower())


class FiledEmailCache:
    """
    Dedup memory for resends and retries.

    Replies are keyed by conversation id. A brand-new message has no
    conversation id until it has been sent, so it is keyed by its
    normalised subject instead. Entries never expire.
    """

    def __init__(self, store: FallbackStore) -> None:
        self.store = store

    @staticmethod
    def key_for(conversation_id: Optional[str], subject: str) -> Optional[str]:
        conversation = (conversation_id or "").strip()
        if conversation:
            return f"{CONVERSATION_PREFIX}{conversation}"
        normalized = normalize_cache_subject(subject)
        if normalized:
            return f"{SUBJECT_PREFIX}{normalized}"
        return None

    async def record(
        self,
        conversation_id: Optional[str],
        subject: str,
        case_id: str,
        document_id: str,
    ) -> Optional[str]:
        key = self.key_for(conversation_id, subject)
        if key is None:
            logger.warning("Neither conversation id nor subject available; not caching")
            return None
        entry = FiledEmailCacheEntry(
            case_id=case_id,
            document_id=document_id,
            subject=subject,
            timestamp=time.time(),
        )
        await self.store.set_json(key, entry.to_record())
        logger.info("Cached filed email under %s (case=%s doc=%s)", key, case_id, document_id)
        return key

    async def lookup(self, conversation_id: str) -> Optional[FiledEmailCacheEntry]:
        if not (conversation_id or "").strip():
            return None
        return await self._read(f"{CONVERSATION_PREFIX}{conversation_id.strip()}")

    async def find_by_subject(self, subject: str) -> Optional[FiledEmailCacheEntry]:
        # Subject hits are not copied to a conversation key: a later, unrelated
        # message with the same subject would otherwise look filed.
        normalized = normalize_cache_subject(subject)
        if not normalized:
            return None
        return await self._read(f"{SUBJECT_PREFIX}{normalized}")

    async def forget(self, conversation_id: str) -> None:
        if (conversation_id or "").strip():
            await self.store.remove(f"{CONVERSATION_PREFIX}{conversation_id.strip()}")

    async def _read(self, key: str) -> Optional[FiledEmailCacheEntry]:
        record = await self.store.get_json(key)
        if not isinstance(record, dict):
            return None
        return FiledEmailCacheEntry.from_record(record)
