"""SQLite-backed storage for received webmentions."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from indieweb.extensions import ExtensionKind, ParsedWebmention

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    payload = row["payload"]
    return {
        "id": row["id"],
        "source": row["source"],
        "target": row["target"],
        "kind": row["kind"],
        "payload": json.loads(payload) if payload is not None else None,
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def row_to_webmention(row: Dict[str, Any]) -> ParsedWebmention:
    """Rebuild a ParsedWebmention from a stored row.

    Kinds this version does not know are kept as plain integers so that
    reparsing reports them instead of failing here.
    """
    kind = row["kind"]
    try:
        kind = ExtensionKind(kind)
    except ValueError:
        pass
    return ParsedWebmention(source=row["source"], target=row["target"], kind=kind, payload=row["payload"])


class WebmentionStore:
    """Persistent webmention storage backed by SQLite.

    One row per (source, target) pair: inserting an existing pair updates
    it in place and refreshes ``updated_at``.
    """

    def __init__(self, storage_path: str):
        self.storage_path = storage_path
        os.makedirs(self.storage_path, mode=0o755, exist_ok=True)
        self.db_path = os.path.join(self.storage_path, "webmentions.db")
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS webmentions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        source TEXT NOT NULL,
                        target TEXT NOT NULL,
                        kind INTEGER NOT NULL,
                        payload TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        UNIQUE(source, target)
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_webmentions_target "
                    "ON webmentions(target)"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_webmentions_created_at "
                    "ON webmentions(created_at)"
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize webmentions database {self.db_path}: {e}")
            raise

    def insert(self, webmention: ParsedWebmention) -> None:
        """Insert a webmention, updating the existing row for the same pair."""
        now = _now()
        payload = json.dumps(webmention.payload) if webmention.payload is not None else None
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO webmentions (source, target, kind, payload, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source, target) DO UPDATE SET
                        kind = excluded.kind,
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (webmention.source, webmention.target, int(webmention.kind), payload, now, now),
                )
            logger.debug(f"Stored webmention: source={webmention.source} target={webmention.target}")
        except sqlite3.Error as e:
            logger.error(f"Failed to store webmention {webmention.source} -> {webmention.target}: {e}")
            raise

    def update(self, webmention: ParsedWebmention) -> bool:
        """Update kind and payload of an existing webmention.

        Returns:
            True if a row was updated
        """
        payload = json.dumps(webmention.payload) if webmention.payload is not None else None
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE webmentions SET kind = ?, payload = ?, updated_at = ? "
                    "WHERE source = ? AND target = ?",
                    (int(webmention.kind), payload, _now(), webmention.source, webmention.target),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to update webmention {webmention.source} -> {webmention.target}: {e}")
            raise

    def delete(self, source: str, target: str) -> bool:
        """Delete the webmention for a (source, target) pair.

        Returns:
            True if a row was deleted
        """
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM webmentions WHERE source = ? AND target = ?",
                    (source, target),
                )
                deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete webmention {source} -> {target}: {e}")
            raise
        if deleted:
            logger.info(f"Deleted webmention: source={source}, target={target}")
        return deleted

    def get(self, source: str, target: str) -> Optional[Dict[str, Any]]:
        """Get the webmention for a (source, target) pair."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM webmentions WHERE source = ? AND target = ?",
                    (source, target),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read webmention {source} -> {target}: {e}")
            return None
        return _row_to_dict(row) if row else None

    def list(self, source: Optional[str] = None, target: Optional[str] = None) -> list[Dict[str, Any]]:
        """List webmentions matching source and/or target, newest first.

        Returns an empty list when neither filter is given.
        """
        clauses = []
        params = []
        if source:
            clauses.append("source = ?")
            params.append(source)
        if target:
            clauses.append("target = ?")
            params.append(target)
        if not clauses:
            return []

        query = (
            "SELECT * FROM webmentions WHERE " + " AND ".join(clauses)
            + " ORDER BY created_at DESC, id DESC"
        )
        try:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to list webmentions (source={source}, target={target}): {e}")
            return []
        return [_row_to_dict(row) for row in rows]

    def count(self) -> int:
        """Total number of stored webmentions."""
        try:
            with self._connect() as conn:
                return conn.execute("SELECT COUNT(*) FROM webmentions").fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Failed to count webmentions: {e}")
            return 0
