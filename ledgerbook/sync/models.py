# -*- coding: utf-8 -*-
"""
Sync Data Models

Data structures shared by the local store, the reconciler, the HTTP client
and the server.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class RecordKind(Enum):
    """Kinds of synchronized records"""
    LEDGER = "ledger"
    CATEGORY = "category"
    GROUP = "group"
    TRANSACTION = "transaction"


class SyncStatus(Enum):
    """Overall status shown to the UI"""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncState(Enum):
    """Orchestrator state machine"""
    IDLE = "idle"
    PROBING = "probing"
    PULLING = "pulling"
    MERGING = "merging"
    PUSHING = "pushing"
    ERROR = "error"


class SyncMode(Enum):
    """Incremental (since watermark) or full calibration (since 0)"""
    INCREMENTAL = "incremental"
    FULL = "full"


class SyncDirection(Enum):
    PROBE = "probe"
    PULL = "pull"
    PUSH = "push"


class SyncOutcome(Enum):
    OK = "ok"
    PARTIAL = "partial"
    ERROR = "error"


@dataclass
class SyncRecord:
    """
    A single synchronized record.

    Only ``id``, ``updated_at`` and ``is_deleted`` take part in conflict
    resolution; ``data`` is carried opaquely.
    """
    kind: RecordKind
    id: str
    updated_at: int
    is_deleted: bool = False
    ledger_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.kind.value, self.id)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation"""
        return {
            'kind': self.kind.value,
            'id': self.id,
            'updated_at': self.updated_at,
            'is_deleted': self.is_deleted,
            'ledger_id': self.ledger_id,
            'data': self.data,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SyncRecord':
        """
        Build a record from its wire representation.

        Raises:
            ValueError, KeyError, TypeError: malformed input
        """
        if not isinstance(d, dict):
            raise TypeError(f"record must be an object, got {type(d).__name__}")

        record_id = d['id']
        if record_id is None or str(record_id) == '':
            raise ValueError("record id is empty")

        updated_at = d['updated_at']
        # bool is an int subclass; reject it explicitly
        if isinstance(updated_at, bool) or not isinstance(updated_at, int):
            raise TypeError(f"updated_at must be an integer, got {updated_at!r}")
        if updated_at < 0:
            raise ValueError(f"updated_at must not be negative: {updated_at}")

        data = d.get('data') or {}
        if not isinstance(data, dict):
            raise TypeError("data must be an object")

        is_deleted = d.get('is_deleted', False)
        if not isinstance(is_deleted, bool):
            raise TypeError(f"is_deleted must be a boolean, got {is_deleted!r}")

        ledger_id = d.get('ledger_id')
        return cls(
            kind=RecordKind(d['kind']),
            id=str(record_id),
            updated_at=updated_at,
            is_deleted=is_deleted,
            ledger_id=str(ledger_id) if ledger_id is not None else None,
            data=data,
        )


def _canonical(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, default=str)


def supersedes(candidate: SyncRecord, current: Optional[SyncRecord]) -> bool:
    """
    Last-writer-wins decision used by every side of the sync.

    ``candidate`` replaces ``current`` when it has a strictly greater
    ``updated_at``. On equal timestamps only a tombstone may replace a live
    record; any other tie keeps ``current``.
    """
    if current is None:
        return True
    if candidate.updated_at > current.updated_at:
        return True
    if candidate.updated_at == current.updated_at:
        return candidate.is_deleted and not current.is_deleted
    return False


def pick_winner(a: SyncRecord, b: SyncRecord) -> SyncRecord:
    """
    Order-independent choice between two versions of the same record.

    Used to collapse duplicates inside one incoming batch so the result
    does not depend on arrival order.
    """
    if supersedes(a, b) and not supersedes(b, a):
        return a
    if supersedes(b, a) and not supersedes(a, b):
        return b
    # same timestamp and same deletion flag: deterministic payload order
    return a if _canonical(a.to_dict()) >= _canonical(b.to_dict()) else b


@dataclass
class PushResult:
    """Server answer to a push"""
    accepted_count: int = 0
    rejected_ids: List[str] = field(default_factory=list)
    ignored_count: int = 0
    version: int = 0
    # server version before the push was applied
    base_version: int = 0
    # (kind, id) of each rejected record whose kind the server could read
    rejected_keys: List[tuple] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'PushResult':
        keys = []
        for item in d.get('rejected') or []:
            if isinstance(item, dict) and item.get('kind') and item.get('id') is not None:
                keys.append((str(item['kind']), str(item['id'])))
        return cls(
            accepted_count=int(d.get('accepted_count', 0)),
            rejected_ids=[str(x) for x in d.get('rejected_ids') or []],
            ignored_count=int(d.get('ignored_count', 0)),
            version=int(d.get('version', 0)),
            base_version=int(d.get('base_version', 0)),
            rejected_keys=keys,
        )


@dataclass
class MergeStats:
    """Outcome of merging one incoming batch"""
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    ignored: int = 0
    skipped: int = 0
    max_updated_at: int = 0
    # highest server version seen (updated_at when the remote sends none)
    max_version: int = 0
    ignored_ids: List[str] = field(default_factory=list)
    skipped_reasons: List[str] = field(default_factory=list)
    # (kind, id) -> (updated_at, is_deleted) of every valid incoming version
    remote_versions: Dict[tuple, tuple] = field(default_factory=dict)

    @property
    def applied(self) -> int:
        return self.inserted + self.updated + self.deleted

    def to_dict(self) -> Dict[str, Any]:
        return {
            'inserted': self.inserted,
            'updated': self.updated,
            'deleted': self.deleted,
            'ignored': self.ignored,
            'skipped': self.skipped,
            'max_updated_at': self.max_updated_at,
            'max_version': self.max_version,
        }


@dataclass
class SyncResult:
    """Outcome of one sync attempt"""
    success: bool
    mode: SyncMode = SyncMode.INCREMENTAL
    skipped: bool = False
    pulled_count: int = 0
    pushed_count: int = 0
    rejected_ids: List[str] = field(default_factory=list)
    merge: MergeStats = field(default_factory=MergeStats)
    errors: List[str] = field(default_factory=list)
    error_type: str = ""  # network, auth, cancelled, internal
    last_sync_version: int = 0
    sync_duration_ms: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'mode': self.mode.value,
            'skipped': self.skipped,
            'pulled_count': self.pulled_count,
            'pushed_count': self.pushed_count,
            'rejected_ids': self.rejected_ids,
            'merge': self.merge.to_dict(),
            'errors': self.errors,
            'error_type': self.error_type,
            'last_sync_version': self.last_sync_version,
            'sync_duration_ms': self.sync_duration_ms,
        }


@dataclass(frozen=True)
class SyncLogEntry:
    """One immutable sync log line"""
    timestamp: datetime
    direction: SyncDirection
    outcome: SyncOutcome
    record_count: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'direction': self.direction.value,
            'outcome': self.outcome.value,
            'record_count': self.record_count,
            'message': self.message,
        }


# Synchronized tables and their payload columns
RECORD_TABLES: Dict[RecordKind, Dict[str, Any]] = {
    RecordKind.LEDGER: {
        'table': 'ledgers',
        'columns': ['name', 'theme_color', 'created_at'],
    },
    RecordKind.CATEGORY: {
        'table': 'categories',
        'columns': ['name', 'icon', 'type', 'sort_order', 'is_custom'],
        'bool_columns': ['is_custom'],
    },
    RecordKind.GROUP: {
        'table': 'category_groups',
        'columns': ['name', 'category_ids', 'sort_order'],
        'json_columns': ['category_ids'],
    },
    RecordKind.TRANSACTION: {
        'table': 'transactions',
        'columns': ['amount', 'type', 'category_id', 'date', 'note', 'created_at'],
    },
}
