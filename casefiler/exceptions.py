"""
Exceptions raised while filing an outgoing email.

Messages deliberately carry the words the send orchestrator classifies on
(timeout, workspace, token, network).
"""

from __future__ import annotations


class FilingError(Exception):
    """Base class for every filing failure."""


class MissingToken(FilingError):
    """Raised when no valid SingleCase session token is available."""

    def __init__(self, message: str = "Missing auth token.") -> None:
        super().__init__(message)


class MissingWorkspace(FilingError):
    """Raised when no workspace host has been configured."""

    def __init__(self, message: str = "Workspace host is missing.") -> None:
        super().__init__(message)


class NetworkFailure(FilingError):
    """Raised when a request never produced an HTTP response."""


class StageTimeout(FilingError):
    """Raised when an orchestrator stage exceeds its budget."""

    def __init__(self, stage: str, seconds: float) -> None:
        super().__init__(f"timeout in stage '{stage}' after {seconds:.1f}s")
        self.stage = stage
        self.seconds = seconds


class UploadFailed(FilingError):
    """Raised on a non-success HTTP status from the documents API."""

    def __init__(self, prefix: str, status: int, snippet: str = "") -> None:
        detail = f": {snippet}" if snippet else ""
        super().__init__(f"{prefix} ({status}){detail}")
        self.status = status
        self.snippet = snippet


class DocumentLocked(UploadFailed):
    """The target document is locked by another editor (HTTP 423)."""

    def __init__(self, snippet: str = "") -> None:
        super().__init__("Document is locked by another user", 423, snippet)


class NoCompatibleEndpoint(FilingError):
    """Every version-upload route answered 404 or 405."""

    def __init__(self, attempts: list[str]) -> None:
        super().__init__(
            "Upload version failed: no supported endpoint found (tried "
            + ", ".join(attempts)
            + ")"
        )
        self.attempts = attempts


class MissingDocumentId(FilingError):
    """The create call succeeded but the response did not name a document."""

    def __init__(self, payload) -> None:
        super().__init__(f"Upload response did not include a document id: {payload!r}"[:400])
        self.payload = payload
