"""Lifecycle record store: SQLite-backed extension records, extension data, audit log."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from exthost.core.utils import utcnow

from .errors import AlreadyInstalled, NotFound, PermissionDenied, StoreUnavailable
from .models import AuditEvent, ExtensionRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS plugins (
    slug TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    settings TEXT NOT NULL DEFAULT '{}',
    is_active INTEGER NOT NULL DEFAULT 0,
    installed_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS plugin_data (
    slug TEXT NOT NULL REFERENCES plugins(slug) ON DELETE CASCADE,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (slug, key)
);
CREATE TABLE IF NOT EXISTS audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    details TEXT NOT NULL DEFAULT '{}',
    actor TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
"""


def _row_to_record(row: sqlite3.Row) -> ExtensionRecord:
    try:
        settings = json.loads(row["settings"] or "{}")
    except json.JSONDecodeError as e:
        logger.warning("corrupt settings for %s, using {}: %s", row["slug"], e)
        settings = {}
    if not isinstance(settings, dict):
        logger.warning("settings for %s are not an object, using {}", row["slug"])
        settings = {}
    return ExtensionRecord(
        slug=row["slug"],
        name=row["name"],
        version=row["version"],
        settings=settings,
        is_active=bool(row["is_active"]),
        installed_at=row["installed_at"],
        updated_at=row["updated_at"],
    )


@contextmanager
def _store_errors(what: str) -> Iterator[None]:
    """Translate driver failures (other than constraint violations) into StoreUnavailable."""
    try:
        yield
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as e:
        logger.error("store failure during %s: %s", what, e)
        raise StoreUnavailable(f"store unavailable during {what}: {e}") from e


class StoreTransaction:
    """Record operations bound to one open connection and its transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    # ── Records ─────────────────────────────────────────────────────

    def get(self, slug: str) -> ExtensionRecord | None:
        with _store_errors("get"):
            row = self._conn.execute("SELECT * FROM plugins WHERE slug = ?", (slug,)).fetchone()
        return _row_to_record(row) if row else None

    def all(self) -> list[ExtensionRecord]:
        with _store_errors("list"):
            rows = self._conn.execute("SELECT * FROM plugins ORDER BY slug").fetchall()
        return [_row_to_record(r) for r in rows]

    def insert(self, record: ExtensionRecord) -> ExtensionRecord:
        now = utcnow()
        record.installed_at = record.installed_at or now
        record.updated_at = record.updated_at or now
        try:
            with _store_errors("insert"):
                self._conn.execute(
                    "INSERT INTO plugins (slug, name, version, settings, is_active, installed_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.slug,
                        record.name,
                        record.version,
                        json.dumps(record.settings),
                        int(record.is_active),
                        record.installed_at,
                        record.updated_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise AlreadyInstalled(f"extension already installed: {record.slug}", slug=record.slug) from e
        return record

    def remove(self, slug: str) -> None:
        with _store_errors("remove"):
            cur = self._conn.execute("DELETE FROM plugins WHERE slug = ?", (slug,))
        if cur.rowcount == 0:
            raise NotFound(f"extension not installed: {slug}", slug=slug, reason="record")

    def set_active(self, slug: str, active: bool) -> None:
        with _store_errors("set_active"):
            cur = self._conn.execute(
                "UPDATE plugins SET is_active = ?, updated_at = ? WHERE slug = ?",
                (int(active), utcnow(), slug),
            )
        if cur.rowcount == 0:
            raise NotFound(f"extension not installed: {slug}", slug=slug, reason="record")

    def update_settings(self, slug: str, settings: dict[str, Any]) -> None:
        with _store_errors("update_settings"):
            cur = self._conn.execute(
                "UPDATE plugins SET settings = ?, updated_at = ? WHERE slug = ?",
                (json.dumps(settings), utcnow(), slug),
            )
        if cur.rowcount == 0:
            raise NotFound(f"extension not installed: {slug}", slug=slug, reason="record")

    # ── Extension data ──────────────────────────────────────────────

    def kv_get(self, slug: str, key: str, default: Any = None) -> Any:
        with _store_errors("kv_get"):
            row = self._conn.execute(
                "SELECT value FROM plugin_data WHERE slug = ? AND key = ?", (slug, key)
            ).fetchone()
        return json.loads(row["value"]) if row else default

    def kv_set(self, slug: str, key: str, value: Any) -> None:
        try:
            with _store_errors("kv_set"):
                self._conn.execute(
                    "INSERT INTO plugin_data (slug, key, value) VALUES (?, ?, ?) "
                    "ON CONFLICT(slug, key) DO UPDATE SET value = excluded.value",
                    (slug, key, json.dumps(value)),
                )
        except sqlite3.IntegrityError as e:
            raise NotFound(f"extension not installed: {slug}", slug=slug, reason="record") from e

    def kv_delete(self, slug: str, key: str) -> bool:
        with _store_errors("kv_delete"):
            cur = self._conn.execute(
                "DELETE FROM plugin_data WHERE slug = ? AND key = ?", (slug, key)
            )
        return cur.rowcount > 0

    def kv_items(self, slug: str) -> dict[str, Any]:
        with _store_errors("kv_items"):
            rows = self._conn.execute(
                "SELECT key, value FROM plugin_data WHERE slug = ? ORDER BY key", (slug,)
            ).fetchall()
        return {r["key"]: json.loads(r["value"]) for r in rows}

    # ── Audit ───────────────────────────────────────────────────────

    def audit(self, action: str, details: dict[str, Any] | None = None, actor: str = "") -> AuditEvent:
        event = AuditEvent(action=action, details=dict(details or {}), actor=actor, timestamp=utcnow())
        with _store_errors("audit"):
            self._conn.execute(
                "INSERT INTO audit_logs (action, details, actor, created_at) VALUES (?, ?, ?, ?)",
                (event.action, json.dumps(event.details, default=str), event.actor, event.timestamp),
            )
        return event

    def audit_recent(self, limit: int = 50, action: str | None = None) -> list[AuditEvent]:
        query = "SELECT * FROM audit_logs"
        params: list[Any] = []
        if action:
            query += " WHERE action = ?"
            params.append(action)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with _store_errors("audit"):
            rows = self._conn.execute(query, params).fetchall()
        return [
            AuditEvent(
                action=r["action"],
                details=json.loads(r["details"] or "{}"),
                actor=r["actor"],
                timestamp=r["created_at"],
            )
            for r in rows
        ]


class RecordStore:
    """Source of truth for installed/active state.

    Every public method runs in its own short transaction; ``transaction()``
    groups several operations (and extension hook code) into one atomic unit.
    """

    def __init__(self, path: Path | str, timeout: float = 30.0):
        self.path = Path(path)
        self.timeout = timeout
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.path), timeout=self.timeout, isolation_level=None, check_same_thread=False
            )
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(f"cannot open store {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with _store_errors("connect"):
                conn.execute("PRAGMA foreign_keys = ON")
                self._ensure_schema(conn)
        except StoreUnavailable:
            conn.close()
            raise
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if not self._schema_ready:
                conn.executescript(SCHEMA)
                self._schema_ready = True

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[StoreTransaction]:
        """Open a transaction; commit on success, roll back on any exception.

        Write transactions take the database write lock up front (BEGIN IMMEDIATE)
        so that two writers never interleave; read transactions do not block them.
        """
        conn = self._connect()
        try:
            with _store_errors("begin"):
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield StoreTransaction(conn)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            with _store_errors("commit"):
                conn.execute("COMMIT")
        finally:
            conn.close()

    def get(self, slug: str) -> ExtensionRecord | None:
        with self.transaction(write=False) as tx:
            return tx.get(slug)

    def all(self) -> list[ExtensionRecord]:
        with self.transaction(write=False) as tx:
            return tx.all()

    def insert(self, record: ExtensionRecord) -> ExtensionRecord:
        with self.transaction() as tx:
            return tx.insert(record)

    def remove(self, slug: str) -> None:
        with self.transaction() as tx:
            tx.remove(slug)

    def set_active(self, slug: str, active: bool) -> None:
        with self.transaction() as tx:
            tx.set_active(slug, active)

    def update_settings(self, slug: str, settings: dict[str, Any]) -> None:
        with self.transaction() as tx:
            tx.update_settings(slug, settings)

    def kv_get(self, slug: str, key: str, default: Any = None) -> Any:
        with self.transaction(write=False) as tx:
            return tx.kv_get(slug, key, default)

    def kv_set(self, slug: str, key: str, value: Any) -> None:
        with self.transaction() as tx:
            tx.kv_set(slug, key, value)

    def kv_delete(self, slug: str, key: str) -> bool:
        with self.transaction() as tx:
            return tx.kv_delete(slug, key)

    def kv_items(self, slug: str) -> dict[str, Any]:
        with self.transaction(write=False) as tx:
            return tx.kv_items(slug)


class ExtensionStorage:
    """Key/value storage handed to extension code, scoped to one slug.

    *backend* is either a StoreTransaction (lifecycle hooks: writes commit or
    roll back with the transition) or a RecordStore (API calls: each write
    commits on its own).
    """

    def __init__(self, backend: StoreTransaction | RecordStore, slug: str, writable: bool = True):
        self._backend = backend
        self.slug = slug
        self.writable = writable

    def get(self, key: str, default: Any = None) -> Any:
        return self._backend.kv_get(self.slug, key, default)

    def items(self) -> dict[str, Any]:
        return self._backend.kv_items(self.slug)

    def set(self, key: str, value: Any) -> None:
        self._check_writable()
        self._backend.kv_set(self.slug, key, value)

    def delete(self, key: str) -> bool:
        self._check_writable()
        return self._backend.kv_delete(self.slug, key)

    def _check_writable(self) -> None:
        if not self.writable:
            raise PermissionDenied(f"storage for {self.slug} is read-only here", slug=self.slug)


class AuditLog:
    """Append-only audit sink stored next to the records."""

    def __init__(self, store: RecordStore):
        self._store = store

    def record(self, action: str, details: dict[str, Any] | None = None, actor: str = "") -> AuditEvent:
        """Write one event in its own transaction."""
        with self._store.transaction() as tx:
            return tx.audit(action, details, actor)

    def recent(self, limit: int = 50, action: str | None = None) -> list[AuditEvent]:
        with self._store.transaction(write=False) as tx:
            return tx.audit_recent(limit, action)
