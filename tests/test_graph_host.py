"""
Graph mail host tests. MSAL is replaced by a stub application; Graph HTTP
calls are served by ``responses``.
"""

import pytest
from responses import matchers

from casefiler import graph_host
from casefiler.config import Settings
from casefiler.graph_host import GraphMailHost
from casefiler.identity import resolve_candidate_keys

GRAPH = "https://graph.microsoft.com/v1.0"


class StubApp:
    def __init__(self, client_id, authority, token_cache):
        self.client_id = client_id
        self.authority = authority

    def get_accounts(self):
        return [{"username": "anna@example.com"}]

    def acquire_token_silent(self, scopes, account):
        return {"access_token": "graph-token"}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_origin="https://api.example.test",
        graph_client_id="client-1",
        graph_token_cache=tmp_path / "msal.bin",
    )


@pytest.fixture
def stub_msal(monkeypatch):
    monkeypatch.setattr(graph_host.msal, "PublicClientApplication", StubApp)


DRAFT = {
    "id": "AAMk-draft",
    "subject": "Re: Q3 Report",
    "body": {"contentType": "text", "content": "Numbers attached."},
    "conversationId": "conv-42",
    "createdDateTime": "2024-05-01T10:00:00Z",
    "from": {"emailAddress": {"address": "anna@example.com", "name": "Anna Novak"}},
    "toRecipients": [{"emailAddress": {"address": "Bob@Example.com"}}],
    "ccRecipients": [{"emailAddress": {"address": "bob@example.com"}}],
    "bccRecipients": [{"emailAddress": {"address": "carol@example.com"}}],
}


@pytest.mark.asyncio
async def test_loads_draft_and_answers_accessors(settings, stub_msal, mocked_api):
    mocked_api.add(
        "GET",
        f"{GRAPH}/me/messages/AAMk-draft",
        json=DRAFT,
        match=[matchers.header_matcher({"Authorization": "Bearer graph-token"})],
    )

    host = await GraphMailHost(settings, "AAMk-draft").load()

    assert host.has_item
    assert host.conversation_id == "conv-42"
    assert await host.get_subject() == "Re: Q3 Report"
    assert await host.get_body_text() == "Numbers attached."
    assert await host.get_recipients() == ["bob@example.com", "carol@example.com"]
    sender = await host.get_sender()
    assert (sender.email, sender.name) == ("anna@example.com", "Anna Novak")
    request = mocked_api.calls[0].request
    assert request.headers["Prefer"] == 'outlook.body-content-type="text"'


@pytest.mark.asyncio
async def test_candidate_keys_from_graph_draft(settings, stub_msal, mocked_api):
    mocked_api.add("GET", f"{GRAPH}/me/messages/AAMk-draft", json=DRAFT)

    host = await GraphMailHost(settings, "AAMk-draft").load()

    assert await resolve_candidate_keys(host) == [
        "AAMk-draft",
        "draft:conv-42",
        "draft:2024-05-01T10:00:00Z",
        "draft:current",
        "last_compose",
    ]


@pytest.mark.asyncio
async def test_sender_falls_back_to_profile(settings, stub_msal, mocked_api):
    draft = dict(DRAFT, **{"from": None})
    mocked_api.add("GET", f"{GRAPH}/me/messages/AAMk-draft", json=draft)
    mocked_api.add("GET", f"{GRAPH}/me", json={"mail": "anna@example.com", "displayName": "Anna"})

    host = await GraphMailHost(settings, "AAMk-draft").load()
    sender = await host.get_sender()

    assert (sender.email, sender.name) == ("anna@example.com", "Anna")


def test_requires_client_id(tmp_path):
    settings = Settings(api_origin="https://api.example.test", graph_client_id="")

    with pytest.raises(ValueError):
        GraphMailHost(settings, "AAMk-draft")
