# -*- coding: utf-8 -*-
"""Shared fixtures: temporary databases and an in-process sync endpoint."""

from __future__ import annotations

import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ledgerbook.sync.models import PushResult, RecordKind, SyncRecord
from ledgerbook.sync.sync_client import AuthError, NetworkError
from ledgerbook_server import record_service
from ledgerbook_server.database import init_db

ACCOUNT = "acct-1"


def make_record(record_id: str, updated_at: int, is_deleted: bool = False,
                kind: RecordKind = RecordKind.TRANSACTION,
                ledger_id: Optional[str] = "L1", **data: Any) -> SyncRecord:
    if kind == RecordKind.LEDGER:
        ledger_id = None
    return SyncRecord(
        kind=kind,
        id=record_id,
        updated_at=updated_at,
        is_deleted=is_deleted,
        ledger_id=ledger_id,
        data=dict(data),
    )


def create_server_sessions(db_path: Optional[str] = None):
    """
    Session factory over a fresh server database.

    In memory by default; pass a file path when sessions must be used
    from several threads at once.
    """
    if db_path is None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False, "timeout": 10},
        )
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class TempDatabase:
    """Temporary directory holding one device database."""

    def __init__(self, name: str = "ledgerbook.db") -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.path = str(Path(self._temp_dir.name) / name)

    def cleanup(self) -> None:
        self._temp_dir.cleanup()


class InProcessEndpoint:
    """
    Remote endpoint calling the server's record service directly.

    ``fail_on`` names a call ('probe', 'pull', 'push') that raises
    ``failure``; ``reject_ids`` (any kind) and ``reject_keys``
    ((kind, id) pairs) are refused on push.
    """

    def __init__(self, sessions, account_id: str = ACCOUNT) -> None:
        self.sessions = sessions
        self.account_id = account_id
        self.fail_on: Optional[str] = None
        self.failure: Exception = NetworkError("connection refused")
        self.reject_ids: Set[str] = set()
        self.reject_keys: Set[tuple] = set()
        self.calls: List[str] = []
        self.pushed_batches: List[List[SyncRecord]] = []
        self.on_call = None

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.on_call:
            self.on_call(name)
        if self.fail_on == name:
            raise self.failure

    def probe_version(self) -> int:
        self._enter('probe')
        db = self.sessions()
        try:
            return record_service.current_version(db, self.account_id)
        finally:
            db.close()

    def pull(self, since: int = 0) -> List[Dict[str, Any]]:
        self._enter('pull')
        db = self.sessions()
        try:
            return record_service.pull_records(db, self.account_id, since)
        finally:
            db.close()

    def push(self, records: List[SyncRecord]) -> PushResult:
        self._enter('push')
        self.pushed_batches.append(list(records))
        refused = [r for r in records if r.id in self.reject_ids or r.key in self.reject_keys]
        refused_keys = {r.key for r in refused}
        accepted = [r.to_dict() for r in records if r.key not in refused_keys]
        db = self.sessions()
        try:
            result = record_service.push_records(db, self.account_id, accepted)
        finally:
            db.close()
        for record in sorted(refused, key=lambda r: r.key):
            result.rejected_ids.append(record.id)
            result.rejected_keys.append(record.key)
        return result

    def remote_records(self) -> Dict[tuple, SyncRecord]:
        db = self.sessions()
        try:
            return {
                (d['kind'], d['id']): SyncRecord.from_dict(d)
                for d in record_service.pull_records(db, self.account_id, 0)
            }
        finally:
            db.close()


__all__ = [
    "ACCOUNT",
    "AuthError",
    "InProcessEndpoint",
    "NetworkError",
    "TempDatabase",
    "create_server_sessions",
    "make_record",
]
