"""Build the .eml document filed for an outgoing message."""

from __future__ import annotations

import base64
import re
from datetime import UTC, datetime
from email.utils import format_datetime

from .models import EmailArtifact, Sender

EML_MIME_TYPE = "message/rfc822"
RECIPIENT_HEADER = "SingleCase <noreply@singlecase>"
MAX_FILE_STEM = 80

_RESERVED_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def safe_file_name(value: str) -> str:
    """Turn a subject into a file stem every filesystem accepts."""
    cleaned = _RESERVED_CHARS.sub(" ", (value or "").strip())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned[:MAX_FILE_STEM].strip() or "email"


def build_email_artifact(
    subject: str,
    body: str,
    sender: Sender,
    message_key: str,
    now: datetime | None = None,
) -> EmailArtifact:
    sent_at = now or datetime.now(tz=UTC)
    headers = [
        f"From: {sender.name} <{sender.email}>",
        f"To: {RECIPIENT_HEADER}",
        f"Subject: {subject}",
        f"Date: {format_datetime(sent_at.astimezone(UTC), usegmt=True)}",
        f"Message-ID: <{message_key}@outlook>",
        "MIME-Version: 1.0",
        "Content-Type: text/plain; charset=UTF-8",
        "Content-Transfer-Encoding: 8bit",
    ]
    text = "\r\n".join(headers) + "\r\n\r\n" + (body or "").strip() + "\r\n"
    return EmailArtifact(
        file_name=f"{safe_file_name(subject or 'email')}.eml",
        mime_type=EML_MIME_TYPE,
        text=text,
        data_base64=base64.b64encode(text.encode("utf-8")).decode("ascii"),
    )
