"""Replicated key-value storage over two independently available backends."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Optional, Protocol

import sqlite_utils

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Minimal async key-value API every backend exposes."""

    name: str

    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class SqliteKeyValueBackend:
    """Local key-value table; the primary backend."""

    TABLE = "kv_store"
    name = "sqlite"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Calls arrive from worker threads, serialised by the lock below.
        connection = sqlite3.connect(str(db_path), check_same_thread=False)
        self.db = sqlite_utils.Database(connection)
        self._lock = threading.Lock()
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {"key": str, "value": str, "updated_at": str},
            pk="key",
            if_not_exists=True,
        )

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            rows = list(self.db[self.TABLE].rows_where("[key] = ?", [key], limit=1))
        if not rows:
            return None
        return rows[0]["value"]

    def _set(self, key: str, value: str) -> None:
        with self._lock:
            self.db[self.TABLE].upsert(
                {
                    "key": key,
                    "value": value,
                    "updated_at": datetime.now(tz=UTC).isoformat(),
                },
                pk="key",
            )

    def _remove(self, key: str) -> None:
        with self._lock:
            self.db[self.TABLE].delete_where("[key] = ?", [key])

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)


class JsonRoamingSettings:
    """Synchronous settings bag persisted to a JSON file on ``save``."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._data: dict[str, str] = {}
        if path.exists():
            raw = path.read_text(encoding="utf-8")
            loaded = json.loads(raw) if raw.strip() else {}
            if isinstance(loaded, dict):
                self._data = {str(k): v for k, v in loaded.items()}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        snapshot = dict(self._data)
        tmp_path.write_text(json.dumps(snapshot, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)


class RoamingSettingsBackend:
    """Adapts a synchronous settings object that needs an explicit save."""

    name = "roaming"

    def __init__(self, settings: JsonRoamingSettings) -> None:
        self.settings = settings
        self._lock = threading.Lock()

    async def get_item(self, key: str) -> Optional[str]:
        value = self.settings.get(key)
        return value if isinstance(value, str) else None

    async def set_item(self, key: str, value: str) -> None:
        self.settings.set(key, value)
        await asyncio.to_thread(self._save)

    async def remove_item(self, key: str) -> None:
        self.settings.remove(key)
        await asyncio.to_thread(self._save)

    def _save(self) -> None:
        with self._lock:
            self.settings.save()


class FallbackStore:
    """
    Best-effort replicated store.

    Reads try the primary backend, then the secondary; the first value found
    wins (an empty string counts as found). Writes and removals are attempted
    on both backends and individual failures are only logged, so a partial
    write is a possible, silent outcome. No method ever raises.
    """

    def __init__(
        self,
        primary: Optional[StorageBackend],
        secondary: Optional[StorageBackend] = None,
    ) -> None:
        self.backends = [backend for backend in (primary, secondary) if backend is not None]

    async def get(self, key: str) -> Optional[str]:
        k = str(key or "").strip()
        if not k:
            return None
        for backend in self.backends:
            try:
                value = await backend.get_item(k)
            except Exception as exc:
                logger.warning("Storage backend %s failed to read %s: %s", backend.name, k, exc)
                continue
            if value is not None:
                return value
        return None

    async def set(self, key: str, value: str) -> None:
        k = str(key or "").strip()
        if not k:
            return
        v = "" if value is None else str(value)
        for backend in self.backends:
            try:
                await backend.set_item(k, v)
            except Exception as exc:
                logger.warning("Storage backend %s failed to write %s: %s", backend.name, k, exc)

    async def remove(self, key: str) -> None:
        k = str(key or "").strip()
        if not k:
            return
        for backend in self.backends:
            try:
                await backend.remove_item(k)
            except Exception as exc:
                logger.warning("Storage backend %s failed to remove %s: %s", backend.name, k, exc)

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed JSON stored under %s", key)
            return None

    async def set_json(self, key: str, value: Any) -> None:
        await self.set(key, json.dumps(value, ensure_ascii=False))


def build_store(db_path: Path, roaming_path: Path) -> FallbackStore:
    """Wire the sqlite and roaming-settings backends; either may be unavailable."""
    primary: Optional[StorageBackend] = None
    secondary: Optional[StorageBackend] = None
    try:
        primary = SqliteKeyValueBackend(db_path)
    except (OSError, sqlite3.Error) as exc:
        logger.warning("Primary storage unavailable (%s): %s", db_path, exc)
    try:
        secondary = RoamingSettingsBackend(JsonRoamingSettings(roaming_path))
    except (OSError, ValueError) as exc:
        logger.warning("Roaming settings unavailable (%s): %s", roaming_path, exc)
    return FallbackStore(primary, secondary)
