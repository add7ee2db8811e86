# -*- coding: utf-8 -*-
"""
Sync Log

Append-only history of sync attempts, kept in the sync_log table.
Entries are never updated; rotation is an explicit maintenance call.
"""

import logging
import sqlite3
import threading
from datetime import datetime
from typing import Callable, List, Optional

from ..db import get_connection
from .models import SyncLogEntry, SyncDirection, SyncOutcome

logger = logging.getLogger(__name__)


class SyncLog:
    """
    Sync log.

    ``on_entry`` is called with every appended entry (UI signal surface).
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.on_entry: Optional[Callable[[SyncLogEntry], None]] = None
        self._lock = threading.Lock()
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    def _ensure_table(self):
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    record_count INTEGER DEFAULT 0,
                    message TEXT
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        """Write one entry."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("""
                    INSERT INTO sync_log
                    (timestamp, direction, outcome, record_count, message)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    entry.timestamp.isoformat(),
                    entry.direction.value,
                    entry.outcome.value,
                    entry.record_count,
                    entry.message,
                ))
                conn.commit()
            finally:
                conn.close()

        if self.on_entry:
            try:
                self.on_entry(entry)
            except Exception as e:
                logger.error(f"Sync log callback error: {e}")
        return entry

    def record(self, direction: SyncDirection, outcome: SyncOutcome,
               record_count: int = 0, message: str = "") -> SyncLogEntry:
        """Build and append an entry stamped with the current time."""
        return self.append(SyncLogEntry(
            timestamp=datetime.now(),
            direction=direction,
            outcome=outcome,
            record_count=record_count,
            message=message,
        ))

    def entries(self, limit: int = 100) -> List[SyncLogEntry]:
        """
        Latest entries, newest first.

        Args:
            limit: maximum number of entries
        """
        conn = self._get_connection()
        try:
            rows = conn.execute("""
                SELECT timestamp, direction, outcome, record_count, message
                FROM sync_log
                ORDER BY id DESC
                LIMIT ?
            """, (limit,)).fetchall()
        finally:
            conn.close()

        return [
            SyncLogEntry(
                timestamp=datetime.fromisoformat(row['timestamp']),
                direction=SyncDirection(row['direction']),
                outcome=SyncOutcome(row['outcome']),
                record_count=row['record_count'] or 0,
                message=row['message'] or "",
            )
            for row in rows
        ]

    def count(self) -> int:
        conn = self._get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM sync_log").fetchone()[0]
        finally:
            conn.close()

    def rotate(self, max_entries: int = 500) -> int:
        """
        Drop the oldest entries beyond ``max_entries``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            conn = self._get_connection()
            try:
                cur = conn.execute("""
                    DELETE FROM sync_log
                    WHERE id NOT IN (
                        SELECT id FROM sync_log ORDER BY id DESC LIMIT ?
                    )
                """, (max_entries,))
                conn.commit()
                return cur.rowcount
            finally:
                conn.close()
