"""
Candidate key resolution tests.
"""

import pytest

from casefiler.identity import (
    FALLBACK_KEYS,
    first_real_key,
    is_fallback_key,
    resolve_candidate_keys,
)
from conftest import FakeMailHost


class TestResolveCandidateKeys:
    """Ordering, dedup and failure tolerance."""

    @pytest.mark.asyncio
    async def test_full_ordering(self):
        host = FakeMailHost(
            item_id="AAMk-direct",
            async_item_id="AAMk-async",
            conversation_id="conv-1",
            date_time_created="2024-05-01T10:00:00Z",
        )

        keys = await resolve_candidate_keys(host)

        assert keys == [
            "AAMk-direct",
            "AAMk-async",
            "draft:conv-1",
            "draft:2024-05-01T10:00:00Z",
            "draft:current",
            "last_compose",
        ]

    @pytest.mark.asyncio
    async def test_duplicates_removed_keeping_first_position(self):
        host = FakeMailHost(item_id="AAMk-1", async_item_id="AAMk-1")

        keys = await resolve_candidate_keys(host)

        assert keys == ["AAMk-1", "draft:current", "last_compose"]

    @pytest.mark.asyncio
    async def test_new_composition_gets_only_fallbacks(self):
        keys = await resolve_candidate_keys(FakeMailHost())

        assert keys == list(FALLBACK_KEYS)

    @pytest.mark.asyncio
    async def test_async_id_failure_is_ignored(self):
        host = FakeMailHost(item_id="AAMk-1", async_item_id="unused")
        host.async_id_error = RuntimeError("host refused")

        keys = await resolve_candidate_keys(host)

        assert keys == ["AAMk-1", "draft:current", "last_compose"]

    @pytest.mark.asyncio
    async def test_async_id_timeout_is_ignored(self):
        host = FakeMailHost(async_item_id="slow")
        host.async_id_delay = 0.5

        keys = await resolve_candidate_keys(host, async_id_timeout=0.01)

        assert keys == ["draft:current", "last_compose"]

    @pytest.mark.asyncio
    async def test_empty_async_id_is_skipped(self):
        keys = await resolve_candidate_keys(FakeMailHost(async_item_id=""))

        assert keys == ["draft:current", "last_compose"]

    @pytest.mark.asyncio
    async def test_no_item_yields_no_keys(self):
        keys = await resolve_candidate_keys(FakeMailHost(has_item=False))

        assert keys == []


class TestKeyHelpers:

    def test_fallback_keys(self):
        assert is_fallback_key("draft:current")
        assert is_fallback_key("last_compose")
        assert not is_fallback_key("draft:conv-1")
        assert not is_fallback_key("AAMk-1")

    def test_first_real_key_skips_provisional(self):
        keys = ["draft:conv-1", "AAMk-1", "draft:current", "last_compose"]

        assert first_real_key(keys) == "AAMk-1"

    def test_first_real_key_none_when_only_provisional(self):
        assert first_real_key(["draft:conv-1", "draft:current", "last_compose"]) is None
