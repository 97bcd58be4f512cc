"""Typed key-value settings stored in SQLite with an in-memory cache."""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        key VARCHAR(100) NOT NULL UNIQUE,
        value TEXT,
        type VARCHAR(20) DEFAULT 'string',
        module VARCHAR(50),
        is_public BOOLEAN DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_settings_module ON settings (module)",
)

_COLUMNS = "id, key, value, type, module, is_public, created_at, updated_at"


@dataclass
class Setting:
    """A stored setting with its value kept as text."""

    id: int
    key: str
    value: str
    type: str = "string"
    module: str = ""
    is_public: bool = False
    created_at: str = ""
    updated_at: str = ""

    def decoded(self) -> Any:
        """The value converted back to the type it was stored as."""
        if self.type == "int":
            number = _loads(self.value)
            return number if isinstance(number, int) and not isinstance(number, bool) else 0
        if self.type == "bool":
            flag = _loads(self.value)
            return flag if isinstance(flag, bool) else False
        if self.type == "json":
            return _loads(self.value)
        return self.value


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return None


def _serialize(value: Any) -> tuple[str, str]:
    if isinstance(value, str):
        return value, "string"
    if isinstance(value, bool):
        return json.dumps(value), "bool"
    if isinstance(value, int):
        return json.dumps(value), "int"
    return json.dumps(value, separators=(",", ":"), sort_keys=True), "json"


def _row(row: tuple) -> Setting:
    ident, key, value, kind, module, is_public, created, updated = row
    return Setting(
        id=ident,
        key=key,
        value=value or "",
        type=kind or "string",
        module=module or "",
        is_public=bool(is_public),
        created_at=created or "",
        updated_at=updated or "",
    )


class SettingsManager:
    """Reads and writes settings, caching values by key.

    ``db`` is an open sqlite3 connection or a database path.
    """

    def __init__(self, db: sqlite3.Connection | str = ":memory:") -> None:
        if isinstance(db, sqlite3.Connection):
            self._conn = db
        else:
            self._conn = sqlite3.connect(db, check_same_thread=False)
        self._lock = threading.RLock()
        self._cache: dict[str, Any] = {}
        with self._lock, self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)

    def _find(self, key: str) -> Setting | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM settings WHERE key = ?", (key,)
        ).fetchone()
        return _row(row) if row is not None else None

    def get(self, key: str, default: Any = None) -> Any:
        """The setting's value, or the default when it is not stored."""
        with self._lock:
            if key in self._cache:
                return self._cache[key]
            setting = self._find(key)
            if setting is None:
                return default
            value = setting.decoded()
            self._cache[key] = value
            return value

    def set(self, key: str, value: Any, module: str = "") -> None:
        """Store a value, creating or updating the setting."""
        text, kind = _serialize(value)
        now = datetime.now().astimezone().isoformat()
        with self._lock:
            with self._conn:
                if self._find(key) is None:
                    self._conn.execute(
                        "INSERT INTO settings (key, value, type, module, is_public, created_at, updated_at) "
                        "VALUES (?, ?, ?, ?, 0, ?, ?)",
                        (key, text, kind, module, now, now),
                    )
                else:
                    self._conn.execute(
                        "UPDATE settings SET value = ?, type = ?, "
                        "module = COALESCE(NULLIF(?, ''), module), updated_at = ? WHERE key = ?",
                        (text, kind, module, now, key),
                    )
            self._cache[key] = value

    def _safe_get(self, key: str, default: Any) -> Any:
        try:
            return self.get(key, default)
        except sqlite3.Error:
            return default

    def get_string(self, key: str, default: str = "") -> str:
        value = self._safe_get(key, default)
        return value if isinstance(value, str) else default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._safe_get(key, default)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._safe_get(key, default)
        return value if isinstance(value, bool) else default

    def get_by_module(self, module: str) -> dict[str, Any]:
        """Every setting of a module, keyed by setting key."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM settings WHERE module = ?", (module,)
            ).fetchall()
        return {setting.key: setting.decoded() for setting in map(_row, rows)}

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)
            with self._conn:
                self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    def clear_cache(self) -> None:
        with self._lock:
            self._cache = {}