"""
Send-time filing.

``SendOrchestrator.handle`` runs once per send event. It resolves which
message is being sent, looks up the filing intent recorded for it, uploads
the message as a new document or as a new version of a document with the
same subject, and records the result for later dedup. Filing is
best-effort: whatever happens, the host is told to let the send proceed,
exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import UTC, datetime
from typing import Any, Awaitable, Mapping, Optional, TypeVar

from .artifact import build_email_artifact
from .documents import BaseUrlResolver, DocumentRepository, TokenProvider
from .exceptions import MissingToken, MissingWorkspace, StageTimeout
from .filed_cache import FiledEmailCache
from .host import CompletionSink, MailHost
from .identity import resolve_candidate_keys
from .intents import IntentRepository
from .models import FilingIntent, Sender, SendOutcome, SendState
from .recipient_history import RecipientHistory
from .storage import FallbackStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUTS: dict[str, float] = {
    "auth_cleanup": 0.7,
    "item_keys": 2.0,
    "storage": 1.5,
    "token": 0.9,
    "subject": 1.5,
    "body": 2.5,
    "fetch": 10.0,
}
NOTIFY_TIMEOUT = 2.0

PENDING_FILING_KEY = "sc_pending_filing"
LAST_FILED_CTX_KEY = "sc_last_filed_ctx"
CONV_CTX_KEY_PREFIX = "sc_conv_ctx:"

# Checked in this order; the first match picks the hint.
FAILURE_HINTS: tuple[tuple[str, str], ...] = (
    ("timeout", " (timeout)"),
    ("workspace", " (workspace is not configured)"),
    ("token", " (please sign in again)"),
    ("network", " (network problem)"),
)


def classify_failure(error: BaseException) -> Optional[str]:
    """Return the failure category for an error, looking through its causes."""
    messages: list[str] = []
    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        messages.append(str(current).lower())
        current = current.__cause__ or current.__context__
    text = " ".join(messages)
    for category, _hint in FAILURE_HINTS:
        if category in text:
            return category
    return None


class CompletionGuard:
    """One-shot wrapper around the host's completion callback."""

    def __init__(self, sink: CompletionSink) -> None:
        self._sink = sink
        self._lock = threading.Lock()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def complete(self, allow_event: bool = True, error_message: Optional[str] = None) -> bool:
        with self._lock:
            if self._done:
                return False
            self._done = True
        logger.info("Completing send event (allow=%s, error=%s)", allow_event, bool(error_message))
        try:
            if error_message:
                self._sink(allow_event, error_message)
            else:
                self._sink(allow_event)
        except Exception:
            logger.exception("Completion callback raised")
        return True


class SendOrchestrator:
    """Drives one send event from candidate keys to a filed document."""

    def __init__(
        self,
        store: FallbackStore,
        tokens: TokenProvider,
        workspace: BaseUrlResolver,
        documents: DocumentRepository,
        timeouts: Optional[Mapping[str, float]] = None,
        notification_prefix: str = "SingleCase",
        recipient_history: Optional[RecipientHistory] = None,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.workspace = workspace
        self.documents = documents
        self.timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self.prefix = notification_prefix
        self.recipient_history = recipient_history
        self.intents = IntentRepository(store)
        self.filed_cache = FiledEmailCache(store)

    async def handle(self, host: MailHost, completion: CompletionSink) -> SendOutcome:
        """Process a send event. Never raises; always allows the send."""
        guard = CompletionGuard(completion)
        outcome = SendOutcome()
        try:
            await self._run(host, guard, outcome)
        except Exception as exc:
            logger.error("Filing on send failed: %s", exc, exc_info=True)
            outcome.error = str(exc)
            outcome.advance(SendState.FAILED)
            hint = dict(FAILURE_HINTS).get(classify_failure(exc) or "", "")
            await self._notify(host, outcome, f"{self.prefix}: the email could not be filed{hint}")
            self._finish(guard, outcome)
        finally:
            if not guard.done:
                self._finish(guard, outcome)
        return outcome

    async def _run(self, host: MailHost, guard: CompletionGuard, outcome: SendOutcome) -> None:
        await self._clear_expired_auth()

        keys = await self._stage(
            "item_keys", resolve_candidate_keys(host, self.timeouts["item_keys"])
        )
        outcome.advance(SendState.IDENTITY_RESOLVED)
        if not keys:
            return self._skip(guard, outcome, "no candidate keys")

        intent = await self._stage("storage", self.intents.resolve(keys))
        outcome.advance(SendState.INTENT_RESOLVED)
        if intent is None or not intent.case_id:
            return self._skip(guard, outcome, "no filing intent")
        outcome.case_id = intent.case_id

        if intent.defers_to_user:
            await self._store_pending_filing(host, intent)
            await self._notify(host, outcome, f"{self.prefix}: open the panel to confirm filing.")
            outcome.skipped_reason = "filing deferred to user"
            return self._finish(guard, outcome)

        if not intent.should_file:
            return self._skip(guard, outcome, "auto-file disabled")

        await self._migrate_intent(intent, keys)
        outcome.advance(SendState.KEY_MIGRATED)

        try:
            await self._stage("token", self.tokens.get_token())
        except MissingToken as exc:
            logger.error("No auth token available: %s", exc)
            outcome.error = str(exc)
            await self._notify(
                host, outcome, f"{self.prefix}: not signed in, the email could not be filed on send."
            )
            return self._finish(guard, outcome)
        outcome.advance(SendState.AUTHENTICATED)

        try:
            base_url = await self._stage("storage", self.workspace.resolve_base_url())
        except MissingWorkspace as exc:
            logger.error("No workspace host configured: %s", exc)
            outcome.error = str(exc)
            await self._notify(
                host,
                outcome,
                f"{self.prefix}: no workspace URL configured, the email could not be filed on send.",
            )
            return self._finish(guard, outcome)
        outcome.advance(SendState.WORKSPACE_RESOLVED)
        logger.debug("Workspace base URL: %s", base_url)

        subject = str(await self._stage("subject", host.get_subject()) or "")
        body = str(await self._stage("body", host.get_body_text()) or "")
        sender = await self._read_sender(host)
        conversation_id = _conversation_id(host)
        artifact = build_email_artifact(subject, body, sender, keys[0])
        outcome.advance(SendState.ARTIFACT_BUILT)
        logger.info(
            "Built %s for subject '%s' (%d base64 chars)",
            artifact.file_name,
            subject,
            len(artifact.data_base64),
        )

        existing = None
        try:
            existing = await self._stage(
                "fetch", self.documents.find_by_subject(intent.case_id, subject)
            )
        except Exception as exc:
            logger.warning("Existing-document lookup failed; creating a new document: %s", exc)
        outcome.advance(SendState.DEDUP_CHECKED)

        if existing is not None and intent.duplicates in ("block", "warn"):
            return await self._handle_duplicate(host, guard, outcome, intent, subject, existing.id)

        if existing is not None:
            outcome.advance(SendState.VERSION_PATH)
            await self._stage(
                "fetch",
                self.documents.upload_version(
                    existing.id, artifact.file_name, artifact.mime_type, artifact.data_base64
                ),
            )
            document_id = existing.id
        else:
            outcome.advance(SendState.CREATE_PATH)
            document_id = await self._stage(
                "fetch",
                self.documents.create_document(
                    intent.case_id,
                    artifact.file_name,
                    artifact.mime_type,
                    artifact.data_base64,
                    metadata={
                        "subject": subject,
                        "fromEmail": sender.email,
                        "fromName": sender.name,
                        "conversationId": conversation_id or None,
                    },
                ),
            )
        outcome.document_id = document_id

        await self._persist_context(intent, document_id, conversation_id)
        outcome.advance(SendState.CONTEXT_PERSISTED)

        await self.filed_cache.record(conversation_id, subject, intent.case_id, document_id)
        outcome.advance(SendState.CACHE_PERSISTED)

        await self._record_recipients(host, intent.case_id)

        await self._notify(host, outcome, f"{self.prefix}: email filed on send.")
        self._finish(guard, outcome)

    async def _stage(self, name: str, awaitable: Awaitable[T]) -> T:
        seconds = self.timeouts[name]
        try:
            return await asyncio.wait_for(awaitable, seconds)
        except asyncio.TimeoutError as exc:
            raise StageTimeout(name, seconds) from exc

    async def _clear_expired_auth(self) -> None:
        clear = getattr(self.tokens, "clear_if_expired", None)
        if clear is None:
            return
        try:
            await self._stage("auth_cleanup", clear())
        except Exception as exc:
            logger.debug("Expired-session cleanup skipped: %s", exc)

    async def _migrate_intent(self, intent: FilingIntent, keys: list[str]) -> None:
        try:
            await self._stage("storage", self.intents.migrate(intent, keys))
        except Exception as exc:
            logger.warning("Intent migration failed (non-critical): %s", exc)

    async def _read_sender(self, host: MailHost) -> Sender:
        try:
            return await self._stage("subject", host.get_sender())
        except Exception as exc:
            logger.warning("Could not read sender: %s", exc)
            return Sender(email="", name="")

    async def _handle_duplicate(
        self,
        host: MailHost,
        guard: CompletionGuard,
        outcome: SendOutcome,
        intent: FilingIntent,
        subject: str,
        document_id: str,
    ) -> None:
        outcome.document_id = document_id
        if intent.duplicates == "block":
            logger.info("Duplicate of document %s blocked by intent policy", document_id)
            outcome.skipped_reason = "duplicate blocked"
            await self._notify(
                host,
                outcome,
                f"{self.prefix}: this email already exists in the case. Filing was skipped.",
            )
        else:
            logger.info("Duplicate of document %s deferred to user", document_id)
            outcome.skipped_reason = "duplicate deferred to user"
            await self._store_pending_filing(host, intent, subject)
            await self._notify(
                host,
                outcome,
                f"{self.prefix}: a duplicate was detected. Open the panel to confirm filing.",
            )
        self._finish(guard, outcome)

    async def _store_pending_filing(
        self, host: MailHost, intent: FilingIntent, subject: Optional[str] = None
    ) -> None:
        try:
            if subject is None:
                subject = str(await self._stage("subject", host.get_subject()) or "")
            await self.store.set_json(
                PENDING_FILING_KEY,
                {
                    "caseId": intent.case_id,
                    "subject": subject,
                    "conversationId": _conversation_id(host),
                    "sentAt": datetime.now(tz=UTC).isoformat(),
                },
            )
            logger.info("Pending filing stored for case %s", intent.case_id)
        except Exception as exc:
            logger.warning("Failed to store pending filing: %s", exc)

    async def _persist_context(
        self, intent: FilingIntent, document_id: str, conversation_id: str
    ) -> None:
        context: dict[str, Any] = {"caseId": intent.case_id, "emailDocId": document_id}
        await self.intents.remark_filed(intent, document_id)
        await self.store.set_json(LAST_FILED_CTX_KEY, context)
        if conversation_id:
            await self.store.set_json(f"{CONV_CTX_KEY_PREFIX}{conversation_id}", context)

    async def _record_recipients(self, host: MailHost, case_id: str) -> None:
        if self.recipient_history is None:
            return
        try:
            recipients = await self._stage("storage", host.get_recipients())
            if recipients:
                count = await asyncio.to_thread(self.recipient_history.record, recipients, case_id)
                logger.debug("Recipient history updated for %d addresses", count)
        except Exception as exc:
            logger.warning("Failed to record recipient history: %s", exc)

    async def _notify(self, host: MailHost, outcome: SendOutcome, message: str) -> None:
        outcome.notification = message
        try:
            await asyncio.wait_for(host.notify(message), NOTIFY_TIMEOUT)
        except Exception as exc:
            logger.debug("Notification not shown: %s", exc)
        outcome.advance(SendState.NOTIFIED)

    def _skip(self, guard: CompletionGuard, outcome: SendOutcome, reason: str) -> None:
        logger.info("Nothing to file: %s", reason)
        outcome.skipped_reason = reason
        self._finish(guard, outcome)

    @staticmethod
    def _finish(guard: CompletionGuard, outcome: SendOutcome) -> None:
        if guard.complete(True) and outcome.state is not SendState.DONE:
            outcome.advance(SendState.DONE)


def _conversation_id(host: MailHost) -> str:
    try:
        return str(host.conversation_id or "").strip()
    except Exception:
        return ""
