"""Work out which keys may identify the message being sent."""

from __future__ import annotations

import asyncio
import logging

from .host import MailHost

logger = logging.getLogger(__name__)

DRAFT_PREFIX = "draft:"
FALLBACK_KEYS = ("draft:current", "last_compose")


def is_fallback_key(key: str) -> bool:
    return key in FALLBACK_KEYS


def is_provisional_key(key: str) -> bool:
    return key.startswith(DRAFT_PREFIX) or key in FALLBACK_KEYS


def first_real_key(keys: list[str]) -> str | None:
    """Return the first host-assigned identifier among the candidates."""
    for key in keys:
        if not is_provisional_key(key):
            return key
    return None


def _dedupe(keys: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for key in keys:
        if not key or key in seen:
            continue
        seen.add(key)
        ordered.append(key)
    return ordered


async def resolve_candidate_keys(host: MailHost, async_id_timeout: float = 2.0) -> list[str]:
    """
    Build the ordered candidate keys for the in-flight message.

    Real identifiers come first, then conversation and creation-time derived
    draft keys, then the two static fallback keys. An absent item yields no
    keys at all; host failures only drop the affected key.
    """
    if not host.has_item:
        logger.warning("No mail item available; no candidate keys")
        return []

    keys: list[str] = []

    direct = _safe_str(lambda: host.item_id)
    if direct:
        keys.append(direct)

    if host.supports_async_item_id:
        try:
            async_id = await asyncio.wait_for(host.get_item_id(), async_id_timeout)
            async_id = str(async_id or "").strip()
            if async_id:
                logger.debug("Async item id resolved: %s", async_id[:20])
                keys.append(async_id)
        except asyncio.TimeoutError:
            logger.warning("Async item id lookup timed out after %.1fs", async_id_timeout)
        except Exception as exc:
            logger.warning("Async item id lookup failed: %s", exc)

    conversation = _safe_str(lambda: host.conversation_id)
    if conversation:
        keys.append(f"{DRAFT_PREFIX}{conversation}")

    created = _safe_str(lambda: host.date_time_created)
    if created:
        keys.append(f"{DRAFT_PREFIX}{created}")

    # New compositions have nothing better than these.
    keys.extend(FALLBACK_KEYS)

    resolved = _dedupe(keys)
    logger.info("Candidate item keys: %s", resolved)
    return resolved


def _safe_str(read) -> str:
    try:
        return str(read() or "").strip()
    except Exception as exc:
        logger.debug("Host accessor failed: %s", exc)
        return ""
