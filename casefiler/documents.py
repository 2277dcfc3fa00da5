"""SingleCase documents API: dedup lookup, create and version upload."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import requests
from requests import Response

from .exceptions import (
    DocumentLocked,
    MissingDocumentId,
    NetworkFailure,
    NoCompatibleEndpoint,
    UploadFailed,
)
from .models import ExistingDocumentRef

logger = logging.getLogger(__name__)

# Deployments disagree on the version route; order matters.
VERSION_ENDPOINTS: tuple[tuple[str, str], ...] = (
    ("POST", "/documents/{id}/version"),
    ("POST", "/documents/{id}/versions"),
    ("PUT", "/documents/{id}/versions"),
    ("PUT", "/documents/{id}/version"),
    ("PATCH", "/documents/{id}/versions"),
    ("PATCH", "/documents/{id}/version"),
)

CASE_LISTING_ENDPOINTS: tuple[str, ...] = (
    "/cases/{case_id}/documents",
    "/documents?case_id={case_id}",
    "/cases/{case_id}/files",
)

SOFT_FAILURE_STATUSES = (404, 405)
_REPLY_PREFIX = re.compile(r"^(re|fw|fwd):\s*", re.IGNORECASE)


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...


class BaseUrlResolver(Protocol):
    async def resolve_base_url(self) -> str: ...


def normalize_subject(subject: str, strip_prefixes: bool = True) -> str:
    """Lower-case, collapse whitespace and drop nested Re:/Fw:/Fwd: prefixes."""
    if not subject:
        return ""
    normalized = re.sub(r"\s+", " ", subject.strip().lower())
    if strip_prefixes:
        previous = None
        while normalized and previous != normalized:
            previous = normalized
            normalized = _REPLY_PREFIX.sub("", normalized, count=1)
    return normalized.strip()


class DocumentRepository:
    """Upload filed emails into SingleCase cases."""

    def __init__(
        self,
        tokens: TokenProvider,
        workspace: BaseUrlResolver,
        session: Optional[requests.Session] = None,
        http_timeout: float = 60,
    ) -> None:
        self.tokens = tokens
        self.workspace = workspace
        self.session = session or requests.Session()
        self.http_timeout = http_timeout

    async def find_by_subject(self, case_id: str, subject: str) -> Optional[ExistingDocumentRef]:
        """Return the first .eml document in the case whose subject matches."""
        wanted = normalize_subject(subject)
        if not wanted:
            logger.debug("Empty normalised subject; skipping dedup lookup")
            return None

        token, base = await self._credentials()
        documents = await asyncio.to_thread(self._list_case_documents, base, token, case_id)
        if not documents:
            logger.info("No documents found in case %s", case_id)
            return None

        for doc in documents:
            if not isinstance(doc, dict):
                continue
            file_name = str(doc.get("name") or doc.get("filename") or "")
            if not file_name.lower().endswith(".eml"):
                continue
            doc_subject = self._document_subject(doc, file_name)
            if normalize_subject(doc_subject) != wanted:
                continue
            doc_id = doc.get("id") or doc.get("_id")
            if doc_id in (None, ""):
                logger.debug("Skipping matching document without an id: %s", file_name)
                continue
            ref = ExistingDocumentRef(
                id=str(doc_id),
                name=file_name,
                case_id=str(doc.get("case_id") or case_id),
                subject=doc_subject,
            )
            logger.info("Existing document %s matches subject '%s'", ref.id, subject)
            return ref

        logger.info("No document in case %s matches subject '%s'", case_id, subject)
        return None

    async def create_document(
        self,
        case_id: str,
        file_name: str,
        mime_type: str,
        data_base64: str,
        metadata: Optional[Dict[str, Any]] = None,
        directory_id: Optional[str] = None,
    ) -> str:
        """Create a new document in the case and return its id."""
        token, base = await self._credentials()
        document: Dict[str, Any] = {
            "name": file_name,
            "mime_type": mime_type,
            "data_base64": data_base64,
        }
        if directory_id:
            document["dir_id"] = directory_id
        if metadata:
            document["metadata"] = {k: v for k, v in metadata.items() if v not in (None, "")}
        payload = {"case_id": case_id, "documents": [document]}

        logger.info("Uploading '%s' to case %s (%d base64 chars)", file_name, case_id, len(data_base64))
        response = await asyncio.to_thread(
            self._send, "POST", f"{base}/documents", token, payload
        )
        if not response.ok:
            self._raise_for_status(response, "Upload failed")

        body = self._parse_response_body(response)
        document_id = self._extract_document_id(body)
        if not document_id:
            raise MissingDocumentId(body)
        logger.info("Created document %s in case %s", document_id, case_id)
        return document_id

    async def upload_version(
        self,
        document_id: str,
        file_name: str,
        mime_type: str,
        data_base64: str,
        directory_id: Optional[str] = None,
    ) -> dict:
        """
        Append a new version to an existing document.

        Walks ``VERSION_ENDPOINTS`` in order: 404 and 405 mean "route not
        here, try the next one", any other error stops the probe, the first
        success wins.
        """
        token, base = await self._credentials()
        doc_id = quote(str(document_id), safe="")
        payload: Dict[str, Any] = {
            "name": file_name,
            "mime_type": mime_type,
            "data_base64": data_base64,
        }
        if directory_id:
            payload["dir_id"] = directory_id

        attempts: list[str] = []
        for method, pattern in VERSION_ENDPOINTS:
            url = base + pattern.format(id=doc_id)
            response = await asyncio.to_thread(self._send, method, url, token, payload)
            if response.status_code in SOFT_FAILURE_STATUSES:
                logger.debug("Version endpoint not available: %s %s (%s)", method, url, response.status_code)
                attempts.append(f"{method} {pattern} ({response.status_code})")
                continue
            if not response.ok:
                self._raise_for_status(response, "Upload version failed")
            logger.info("Uploaded new version of document %s via %s %s", document_id, method, pattern)
            body = self._parse_response_body(response)
            return body if isinstance(body, dict) else {}

        raise NoCompatibleEndpoint(attempts)

    async def get_document_meta(self, document_id: str) -> Optional[ExistingDocumentRef]:
        token, base = await self._credentials()
        url = f"{base}/documents/{quote(str(document_id), safe='')}"
        response = await asyncio.to_thread(self._send, "GET", url, token)
        if response.status_code == 404:
            return None
        if not response.ok:
            self._raise_for_status(response, "Get document failed")
        body = self._parse_response_body(response)
        if not isinstance(body, dict):
            return None
        return ExistingDocumentRef(
            id=str(body.get("id") or document_id),
            name=str(body.get("name") or ""),
            case_id=str(body.get("case_id") or ""),
        )

    async def _credentials(self) -> tuple[str, str]:
        token = await self.tokens.get_token()
        base = await self.workspace.resolve_base_url()
        return token, base

    def _send(self, method: str, url: str, token: str, payload: Optional[dict] = None) -> Response:
        headers = {
            "Authentication": token,
            "Content-Type": "application/json",
            "Accept-Encoding": "identity",
        }
        try:
            return self.session.request(
                method, url, headers=headers, json=payload, timeout=self.http_timeout
            )
        except requests.RequestException as exc:
            raise NetworkFailure(f"Network request failed: {exc}") from exc

    def _list_case_documents(self, base: str, token: str, case_id: str) -> list:
        quoted = quote(str(case_id), safe="")
        for pattern in CASE_LISTING_ENDPOINTS:
            url = base + pattern.format(case_id=quoted)
            try:
                response = self._send("GET", url, token)
            except NetworkFailure as exc:
                logger.debug("Listing %s failed: %s", url, exc)
                continue
            if not response.ok:
                logger.debug("Listing %s answered %s", url, response.status_code)
                continue
            body = self._parse_response_body(response)
            documents = self._extract_listing(body)
            if documents is not None:
                logger.debug("Listed %d documents via %s", len(documents), url)
                return documents
        return []

    @staticmethod
    def _extract_listing(body) -> list | None:
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            for field in ("documents", "files", "items"):
                if isinstance(body.get(field), list):
                    return body[field]
            return []
        return None

    @staticmethod
    def _document_subject(doc: dict, file_name: str) -> str:
        metadata = doc.get("metadata") if isinstance(doc.get("metadata"), dict) else {}
        properties = doc.get("properties") if isinstance(doc.get("properties"), dict) else {}
        subject = metadata.get("subject") or doc.get("subject") or properties.get("subject") or ""
        if not subject:
            subject = re.sub(r"\.eml$", "", file_name, flags=re.IGNORECASE)
        return str(subject)

    @staticmethod
    def _raise_for_status(response: Response, prefix: str) -> None:
        snippet = (response.text or "")[:300]
        logger.error("%s (%s): %s", prefix, response.status_code, snippet)
        if response.status_code == 423:
            raise DocumentLocked(snippet)
        raise UploadFailed(prefix, response.status_code, snippet)

    @staticmethod
    def _parse_response_body(response: Response) -> dict | list | str:
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _extract_document_id(payload) -> str | None:
        if isinstance(payload, dict):
            documents = payload.get("documents")
            if isinstance(documents, list) and documents and isinstance(documents[0], dict):
                doc_id = documents[0].get("id")
                if doc_id not in (None, ""):
                    return str(doc_id)
        return None
