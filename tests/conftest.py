"""
Shared fakes and fixtures for casefiler tests.
"""

import asyncio
from typing import Optional

import pytest
import responses

from casefiler.exceptions import MissingToken, MissingWorkspace
from casefiler.models import ExistingDocumentRef, Sender
from casefiler.storage import FallbackStore

BASE_URL = "https://api.example.test/singlecase/acme.singlecase.cz/publicapi/v1"


# ============================================================================
# Storage
# ============================================================================

class MemoryBackend:
    """Dict-backed storage backend that can be switched to failing."""

    def __init__(self, name="memory", failing=False):
        self.name = name
        self.failing = failing
        self.data = {}

    def _check(self):
        if self.failing:
            raise RuntimeError(f"{self.name} unavailable")

    async def get_item(self, key):
        self._check()
        return self.data.get(key)

    async def set_item(self, key, value):
        self._check()
        self.data[key] = value

    async def remove_item(self, key):
        self._check()
        self.data.pop(key, None)


@pytest.fixture
def primary():
    return MemoryBackend("primary")


@pytest.fixture
def secondary():
    return MemoryBackend("secondary")


@pytest.fixture
def store(primary, secondary):
    return FallbackStore(primary, secondary)


# ============================================================================
# Mail host
# ============================================================================

class FakeMailHost:
    """In-memory stand-in for the mail client item being sent."""

    def __init__(
        self,
        item_id="",
        async_item_id=None,
        conversation_id="",
        date_time_created="",
        subject="Re: Q3 Report",
        body="Numbers attached.",
        sender=None,
        recipients=None,
        has_item=True,
    ):
        self._item_id = item_id
        self._async_item_id = async_item_id
        self._conversation_id = conversation_id
        self._date_time_created = date_time_created
        self.subject = subject
        self.body = body
        self.sender = sender or Sender(email="anna@example.com", name="Anna Novak")
        self.recipients = recipients or []
        self._has_item = has_item
        self.async_id_error: Optional[Exception] = None
        self.async_id_delay = 0.0
        self.subject_delay = 0.0
        self.notifications = []

    @property
    def has_item(self):
        return self._has_item

    @property
    def item_id(self):
        return self._item_id

    @property
    def conversation_id(self):
        return self._conversation_id

    @property
    def date_time_created(self):
        return self._date_time_created

    @property
    def supports_async_item_id(self):
        return self._async_item_id is not None

    async def get_item_id(self):
        if self.async_id_delay:
            await asyncio.sleep(self.async_id_delay)
        if self.async_id_error:
            raise self.async_id_error
        return self._async_item_id

    async def get_subject(self):
        if self.subject_delay:
            await asyncio.sleep(self.subject_delay)
        return self.subject

    async def get_body_text(self):
        return self.body

    async def get_recipients(self):
        return list(self.recipients)

    async def get_sender(self):
        return self.sender

    async def notify(self, message):
        self.notifications.append(message)


@pytest.fixture
def host():
    return FakeMailHost(conversation_id="conv-42")


# ============================================================================
# Remote collaborators
# ============================================================================

class FakeTokens:
    def __init__(self, token="tok-123", error=None):
        self.token = token
        self.error = error
        self.calls = 0

    async def get_token(self):
        self.calls += 1
        if self.error:
            raise self.error
        if not self.token:
            raise MissingToken()
        return self.token


class FakeWorkspace:
    def __init__(self, base_url=BASE_URL):
        self.base_url = base_url

    async def resolve_base_url(self):
        if not self.base_url:
            raise MissingWorkspace()
        return self.base_url


class FakeDocuments:
    """Records document calls; behaviour is configured per test."""

    def __init__(self, existing=None, created_id="D9"):
        self.existing = existing
        self.created_id = created_id
        self.find_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.version_error: Optional[Exception] = None
        self.find_delay = 0.0
        self.find_calls = []
        self.create_calls = []
        self.version_calls = []

    @property
    def calls(self):
        return len(self.find_calls) + len(self.create_calls) + len(self.version_calls)

    async def find_by_subject(self, case_id, subject):
        self.find_calls.append((case_id, subject))
        if self.find_delay:
            await asyncio.sleep(self.find_delay)
        if self.find_error:
            raise self.find_error
        return self.existing

    async def create_document(self, case_id, file_name, mime_type, data_base64, metadata=None):
        self.create_calls.append(
            {
                "case_id": case_id,
                "file_name": file_name,
                "mime_type": mime_type,
                "data_base64": data_base64,
                "metadata": metadata,
            }
        )
        if self.create_error:
            raise self.create_error
        return self.created_id

    async def upload_version(self, document_id, file_name, mime_type, data_base64):
        self.version_calls.append((document_id, file_name, mime_type))
        if self.version_error:
            raise self.version_error
        return {}


class CompletionRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, allow_event, error_message=None):
        self.calls.append((allow_event, error_message))


@pytest.fixture
def tokens():
    return FakeTokens()


@pytest.fixture
def workspace():
    return FakeWorkspace()


@pytest.fixture
def documents():
    return FakeDocuments()


@pytest.fixture
def completion():
    return CompletionRecorder()


@pytest.fixture
def existing_doc():
    return ExistingDocumentRef(id="D9", name="Re Q3 Report.eml", case_id="C1")


@pytest.fixture
def mocked_api():
    """Fake SingleCase HTTP API; unregistered URLs raise ConnectionError."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps
