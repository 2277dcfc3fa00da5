"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass
class Sender:
    """Display name and address of the person sending the message."""

    email: str
    name: str = ""


@dataclass
class FilingIntent:
    """A recorded instruction to file the current message into a case on send."""

    case_id: str
    auto_file_on_send: bool
    resolved_under_key: str
    base_case_id: Optional[str] = None
    base_email_doc_id: Optional[str] = None
    filing_on_send: str = ""
    duplicates: str = "version"

    @property
    def should_file(self) -> bool:
        return self.filing_on_send == "always" or self.auto_file_on_send

    @property
    def defers_to_user(self) -> bool:
        # "ask" is the older name of "warn".
        return self.filing_on_send in ("warn", "ask")

    def to_record(self) -> dict[str, Any]:
        """Serialisable body, without the key it was found under."""
        record: dict[str, Any] = {
            "caseId": self.case_id,
            "autoFileOnSend": self.auto_file_on_send,
            "baseCaseId": self.base_case_id or "",
            "baseEmailDocId": self.base_email_doc_id or "",
        }
        if self.filing_on_send:
            record["filingOnSend"] = self.filing_on_send
        if self.duplicates != "version":
            record["duplicates"] = self.duplicates
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any], item_key: str) -> "FilingIntent":
        return cls(
            case_id=str(record.get("caseId") or "").strip(),
            auto_file_on_send=bool(record.get("autoFileOnSend")),
            resolved_under_key=item_key,
            base_case_id=str(record.get("baseCaseId") or "").strip() or None,
            base_email_doc_id=str(record.get("baseEmailDocId") or "").strip() or None,
            filing_on_send=str(record.get("filingOnSend") or "").strip().lower(),
            duplicates=str(record.get("duplicates") or "version").strip().lower(),
        )


@dataclass
class ExistingDocumentRef:
    """A remote document whose subject matches the outgoing message."""

    id: str
    name: str
    case_id: str
    subject: Optional[str] = None


@dataclass
class FiledEmailCacheEntry:
    """Local memory that a conversation or subject was already filed."""

    case_id: str
    document_id: str
    subject: str
    timestamp: float

    def to_record(self) -> dict[str, Any]:
        return {
            "caseId": self.case_id,
            "documentId": self.document_id,
            "subject": self.subject,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "FiledEmailCacheEntry":
        return cls(
            case_id=str(record.get("caseId") or ""),
            document_id=str(record.get("documentId") or ""),
            subject=str(record.get("subject") or ""),
            timestamp=float(record.get("timestamp") or 0),
        )


@dataclass
class EmailArtifact:
    """The .eml document uploaded for a sent message."""

    file_name: str
    mime_type: str
    text: str
    data_base64: str


class SendState(str, Enum):
    START = "start"
    IDENTITY_RESOLVED = "identity_resolved"
    INTENT_RESOLVED = "intent_resolved"
    KEY_MIGRATED = "key_migrated"
    AUTHENTICATED = "authenticated"
    WORKSPACE_RESOLVED = "workspace_resolved"
    ARTIFACT_BUILT = "artifact_built"
    DEDUP_CHECKED = "dedup_checked"
    CREATE_PATH = "create_path"
    VERSION_PATH = "version_path"
    CONTEXT_PERSISTED = "context_persisted"
    CACHE_PERSISTED = "cache_persisted"
    FAILED = "failed"
    NOTIFIED = "notified"
    DONE = "done"


@dataclass
class SendOutcome:
    """What a single send event ended up doing."""

    states: list[SendState] = field(default_factory=lambda: [SendState.START])
    skipped_reason: Optional[str] = None
    case_id: Optional[str] = None
    document_id: Optional[str] = None
    notification: Optional[str] = None
    error: Optional[str] = None

    @property
    def state(self) -> SendState:
        return self.states[-1]

    def advance(self, state: SendState) -> None:
        self.states.append(state)

    def visited(self, state: SendState) -> bool:
        return state in self.states
