"""Interfaces to the mail client the message is being sent from."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import Sender


class MailHost(Protocol):
    """
    Accessors for the item being sent.

    Every accessor degrades to an empty value when the host cannot answer;
    only the orchestrator decides what is fatal.
    """

    @property
    def has_item(self) -> bool: ...

    @property
    def item_id(self) -> str: ...

    @property
    def conversation_id(self) -> str: ...

    @property
    def date_time_created(self) -> str: ...

    @property
    def supports_async_item_id(self) -> bool: ...

    async def get_item_id(self) -> str: ...

    async def get_subject(self) -> str: ...

    async def get_body_text(self) -> str: ...

    async def get_recipients(self) -> list[str]: ...

    async def get_sender(self) -> Sender: ...

    async def notify(self, message: str) -> None: ...


class CompletionSink(Protocol):
    """Callback the host hands over with each send event."""

    def __call__(self, allow_event: bool, error_message: Optional[str] = None) -> None: ...
