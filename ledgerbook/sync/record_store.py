# -*- coding: utf-8 -*-
"""
Versioned Record Store

Local SQLite store for ledgers, categories, category groups and
transactions. Every row carries ``updated_at`` (epoch millis) and an
``is_deleted`` tombstone flag so that it can be synchronized.
"""

import json
import logging
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional

from ..db import get_connection, initialize_database
from .models import RecordKind, SyncRecord, RECORD_TABLES, supersedes

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Malformed record or non-increasing ``updated_at``"""

    def __init__(self, message: str, kind: Optional[str] = None,
                 record_id: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.record_id = record_id
        self.reason = message


def now_ms() -> int:
    return int(time.time() * 1000)


class RecordStore:
    """
    Versioned record store.

    Reads and writes are synchronous; every successful ``upsert`` is
    visible to the next read in the same process.
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path: SQLite database path
        """
        self.db_path = db_path
        self._lock = threading.RLock()
        initialize_database(db_path)

    def _get_connection(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    @property
    def lock(self) -> threading.RLock:
        """Held by writers; hold it to make read-compare-write atomic."""
        return self._lock

    # ============================================================
    # READS
    # ============================================================

    def get(self, kind: RecordKind, record_id: str) -> Optional[SyncRecord]:
        """Point read by (kind, id). Tombstones are returned too."""
        table_name = RECORD_TABLES[kind]['table']
        conn = self._get_connection()
        try:
            row = conn.execute(
                f"SELECT * FROM {table_name} WHERE id = ?", (record_id,)
            ).fetchone()
            return _row_to_record(kind, row) if row else None
        finally:
            conn.close()

    def get_changed_since(self, version: int) -> List[SyncRecord]:
        """
        All records with ``updated_at > version``, tombstones included.

        Ordered by ``updated_at`` so a caller can restart from any version.
        """
        return self._scan("WHERE updated_at > ?", (version,))

    def get_all(self) -> List[SyncRecord]:
        """Every record, used by full calibration sync"""
        return self._scan("", ())

    def count_changed_since(self, version: int) -> int:
        conn = self._get_connection()
        try:
            total = 0
            for config in RECORD_TABLES.values():
                total += conn.execute(
                    f"SELECT COUNT(*) FROM {config['table']} WHERE updated_at > ?",
                    (version,)
                ).fetchone()[0]
            return total
        finally:
            conn.close()

    def list_live(self, kind: RecordKind,
                  ledger_id: Optional[str] = None) -> List[SyncRecord]:
        """Non-deleted records of one kind, optionally for one ledger"""
        table_name = RECORD_TABLES[kind]['table']
        sql = f"SELECT * FROM {table_name} WHERE is_deleted = 0"
        params: tuple = ()
        if ledger_id is not None:
            sql += " AND ledger_id = ?"
            params = (ledger_id,)
        conn = self._get_connection()
        try:
            rows = conn.execute(sql + " ORDER BY updated_at, id", params).fetchall()
            return [_row_to_record(kind, row) for row in rows]
        finally:
            conn.close()

    def max_updated_at(self) -> int:
        conn = self._get_connection()
        try:
            return _max_updated_at(conn)
        finally:
            conn.close()

    def _scan(self, where: str, params: tuple) -> List[SyncRecord]:
        records: List[SyncRecord] = []
        conn = self._get_connection()
        try:
            for kind, config in RECORD_TABLES.items():
                rows = conn.execute(
                    f"SELECT * FROM {config['table']} {where}", params
                ).fetchall()
                records.extend(_row_to_record(kind, row) for row in rows)
        finally:
            conn.close()
        records.sort(key=lambda r: (r.updated_at, r.kind.value, r.id))
        return records

    # ============================================================
    # WRITES
    # ============================================================

    def next_timestamp(self) -> int:
        """
        Timestamp for a local mutation.

        ``max(now, highest stored updated_at + 1)``: strictly increasing per
        record and newer than anything already merged from the remote.
        """
        with self._lock:
            return max(now_ms(), self.max_updated_at() + 1)

    def write_local(self, record: SyncRecord) -> SyncRecord:
        """Stamp a locally mutated record with a fresh timestamp and store it."""
        with self._lock:
            record.updated_at = self.next_timestamp()
            self.upsert(record)
            return record

    def upsert(self, record: SyncRecord) -> bool:
        """
        Insert or overwrite a record by id.

        Returns:
            True if written, False if the same version was already stored

        Raises:
            ValidationError: ``updated_at`` is not newer than the stored one
        """
        config = RECORD_TABLES[record.kind]
        table_name = config['table']

        with self._lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    f"SELECT * FROM {table_name} WHERE id = ?", (record.id,)
                ).fetchone()
                current = _row_to_record(record.kind, row) if row else None

                if not supersedes(record, current):
                    if (current.updated_at == record.updated_at and
                            current.is_deleted == record.is_deleted):
                        # redundant re-application
                        return False
                    raise ValidationError(
                        f"updated_at {record.updated_at} is not newer than "
                        f"stored {current.updated_at}",
                        kind=record.kind.value,
                        record_id=record.id,
                    )

                values = _record_to_row(record)
                col_names = ', '.join(values.keys())
                placeholders = ', '.join(['?' for _ in values])
                try:
                    conn.execute(
                        f"INSERT OR REPLACE INTO {table_name} ({col_names}) "
                        f"VALUES ({placeholders})",
                        list(values.values())
                    )
                except (sqlite3.IntegrityError, sqlite3.InterfaceError,
                        sqlite3.ProgrammingError) as e:
                    raise ValidationError(
                        f"cannot store record: {e}",
                        kind=record.kind.value,
                        record_id=record.id,
                    ) from e
                conn.commit()
                return True
            finally:
                conn.close()

    # ============================================================
    # MAINTENANCE
    # ============================================================

    def compact_tombstones(self, watermark: int, older_than: int) -> int:
        """
        Physically remove tombstones that are already synchronized.

        Only tombstones with ``updated_at`` at or below both ``watermark``
        (the confirmed push watermark) and ``older_than`` are removed.

        Returns:
            Number of rows deleted
        """
        cutoff = min(watermark, older_than)
        removed = 0
        with self._lock:
            conn = self._get_connection()
            try:
                for config in RECORD_TABLES.values():
                    cur = conn.execute(
                        f"DELETE FROM {config['table']} "
                        f"WHERE is_deleted = 1 AND updated_at <= ?",
                        (cutoff,)
                    )
                    removed += cur.rowcount
                conn.commit()
            finally:
                conn.close()
        if removed:
            logger.info(f"Compacted {removed} tombstones (cutoff={cutoff})")
        return removed


def _max_updated_at(conn: sqlite3.Connection) -> int:
    highest = 0
    for config in RECORD_TABLES.values():
        value = conn.execute(
            f"SELECT MAX(updated_at) FROM {config['table']}"
        ).fetchone()[0]
        if value is not None and value > highest:
            highest = value
    return highest


def _row_to_record(kind: RecordKind, row: sqlite3.Row) -> SyncRecord:
    config = RECORD_TABLES[kind]
    data: Dict[str, Any] = {}
    keys = row.keys()
    for col in config['columns']:
        if col not in keys:
            continue
        value = row[col]
        if col in config.get('json_columns', ()):
            try:
                value = json.loads(value) if value else []
            except (TypeError, ValueError):
                value = []
        elif col in config.get('bool_columns', ()):
            value = bool(value)
        data[col] = value

    return SyncRecord(
        kind=kind,
        id=row['id'],
        updated_at=int(row['updated_at']),
        is_deleted=bool(row['is_deleted']),
        ledger_id=row['ledger_id'],
        data=data,
    )


def _record_to_row(record: SyncRecord) -> Dict[str, Any]:
    config = RECORD_TABLES[record.kind]
    values: Dict[str, Any] = {
        'id': record.id,
        'ledger_id': record.ledger_id,
        'updated_at': record.updated_at,
        'is_deleted': 1 if record.is_deleted else 0,
    }
    # Only known columns are stored
    for col in config['columns']:
        if col not in record.data:
            continue
        value = record.data[col]
        if col in config.get('json_columns', ()):
            value = json.dumps(value if value is not None else [])
        elif col in config.get('bool_columns', ()):
            value = 1 if value else 0
        values[col] = value
    return values
