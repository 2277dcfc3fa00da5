"""SQLite-backed memory of which case each recipient's mail was filed to."""

from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable, Optional

import sqlite_utils


def _normalize_email(value: str) -> str:
    return (value or "").strip().lower()


class RecipientHistory:
    """Store the last case per recipient address, with a use count."""

    TABLE = "recipient_history"
    MAX_WEIGHT = 10

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(str(db_path), check_same_thread=False)
        self.db = sqlite_utils.Database(connection)
        self._lock = threading.Lock()
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {"email": str, "case_id": str, "count": int, "last_used": str},
            pk="email",
            if_not_exists=True,
        )

    def _get(self, email: str) -> Optional[dict]:
        rows = list(self.db[self.TABLE].rows_where("email = ?", [email], limit=1))
        return rows[0] if rows else None

    def record(self, emails: Iterable[str], case_id: str) -> int:
        """Note that mail to these recipients was filed to ``case_id``."""
        case_id = (case_id or "").strip()
        if not case_id:
            return 0
        now = datetime.now(tz=UTC).isoformat()
        recorded = 0
        with self._lock:
            table = self.db[self.TABLE]
            for raw in emails:
                email = _normalize_email(raw)
                if not email:
                    continue
                previous = self._get(email)
                count = previous["count"] if previous and previous["case_id"] == case_id else 0
                table.upsert(
                    {"email": email, "case_id": case_id, "count": count + 1, "last_used": now},
                    pk="email",
                )
                recorded += 1
        return recorded

    def best_case_for(self, emails: Iterable[str]) -> Optional[tuple[str, int]]:
        """Vote across recipients; each vote is weighted by its count, capped."""
        votes: dict[str, int] = {}
        with self._lock:
            for raw in emails:
                email = _normalize_email(raw)
                if not email:
                    continue
                hit = self._get(email)
                if not hit or not hit["case_id"]:
                    continue
                weight = min(self.MAX_WEIGHT, max(1, int(hit["count"] or 1)))
                votes[hit["case_id"]] = votes.get(hit["case_id"], 0) + weight

        best: Optional[tuple[str, int]] = None
        for case_id, score in votes.items():
            if best is None or score > best[1]:
                best = (case_id, score)
        return best
