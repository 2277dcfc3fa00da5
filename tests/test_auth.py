"""
Token provider and workspace resolver tests.
"""

import time

import pytest

from casefiler.auth import (
    ISSUED_AT_KEY,
    TOKEN_KEY,
    WORKSPACE_HOST_KEY,
    StoredTokenProvider,
    WorkspaceResolver,
    normalize_host,
)
from casefiler.config import Settings
from casefiler.exceptions import MissingToken, MissingWorkspace


@pytest.fixture
def settings():
    return Settings(api_origin="https://api.example.test/", workspace_host=None)


class TestStoredTokenProvider:

    @pytest.mark.asyncio
    async def test_returns_fresh_token(self, store):
        provider = StoredTokenProvider(store)
        await provider.set_auth("tok-123", "Anna@Example.com")

        assert await provider.get_token() == "tok-123"
        assert await store.get("sc_user_email") == "anna@example.com"

    @pytest.mark.asyncio
    async def test_missing_token(self, store):
        with pytest.raises(MissingToken) as excinfo:
            await StoredTokenProvider(store).get_token()

        assert "token" in str(excinfo.value).lower()

    @pytest.mark.asyncio
    async def test_expired_token(self, store):
        await store.set(TOKEN_KEY, "tok-old")
        await store.set(ISSUED_AT_KEY, str(int((time.time() - 9 * 3600) * 1000)))

        with pytest.raises(MissingToken):
            await StoredTokenProvider(store, ttl_seconds=8 * 3600).get_token()

    @pytest.mark.asyncio
    async def test_clear_if_expired(self, store):
        await store.set(TOKEN_KEY, "tok-old")
        await store.set(ISSUED_AT_KEY, "0")
        provider = StoredTokenProvider(store)

        assert await provider.clear_if_expired() is True
        assert await store.get(TOKEN_KEY) is None

    @pytest.mark.asyncio
    async def test_clear_if_expired_keeps_valid_session(self, store):
        provider = StoredTokenProvider(store)
        await provider.set_auth("tok-123", "anna@example.com")

        assert await provider.clear_if_expired() is False
        assert await store.get(TOKEN_KEY) == "tok-123"


class TestWorkspaceResolver:

    @pytest.mark.asyncio
    async def test_base_url_from_stored_host(self, store, settings):
        await store.set(WORKSPACE_HOST_KEY, "https://Acme.SingleCase.cz/app/")

        base = await WorkspaceResolver(store, settings).resolve_base_url()

        assert base == "https://api.example.test/singlecase/acme.singlecase.cz/publicapi/v1"

    @pytest.mark.asyncio
    async def test_host_is_url_encoded(self, store, settings):
        await store.set(WORKSPACE_HOST_KEY, "acme.singlecase.cz:8443")

        base = await WorkspaceResolver(store, settings).resolve_base_url()

        assert base.endswith("/singlecase/acme.singlecase.cz%3A8443/publicapi/v1")

    @pytest.mark.asyncio
    async def test_configured_seed_is_used_when_nothing_stored(self, store):
        settings = Settings(
            api_origin="https://api.example.test",
            workspace_host="seed.singlecase.cz",
            tenant_prefix="/tenant/",
        )

        base = await WorkspaceResolver(store, settings).resolve_base_url()

        assert base == "https://api.example.test/tenant/seed.singlecase.cz/publicapi/v1"

    @pytest.mark.asyncio
    async def test_missing_workspace(self, store, settings):
        with pytest.raises(MissingWorkspace) as excinfo:
            await WorkspaceResolver(store, settings).resolve_base_url()

        assert "workspace" in str(excinfo.value).lower()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://acme.singlecase.cz/x/y", "acme.singlecase.cz"),
        ("  HTTP://Acme.cz ", "acme.cz"),
        ("acme.cz", "acme.cz"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_host(raw, expected):
    assert normalize_host(raw) == expected
