# -*- coding: utf-8 -*-
"""
Record Service

Version probe, pull and push for one account. Pushed records are applied
with the same last-writer-wins rule the clients use, so every side picks
the same winner whatever order pushes and pulls arrive in.

Every stored write gets an account-wide ``version``:
``max(previous version + 1, updated_at)``. It equals ``updated_at`` while
device clocks move forward and keeps increasing when a device pushes
older edits late, so a pull ``since`` a version never misses them.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ledgerbook.sync.models import PushResult, RecordKind, SyncRecord, pick_winner, supersedes

from .models import AccountRevision, StoredRecord, SyncAudit

logger = logging.getLogger(__name__)

_account_locks: Dict[str, threading.Lock] = {}
_account_locks_guard = threading.Lock()


def to_record(row: StoredRecord) -> SyncRecord:
    return SyncRecord(
        kind=RecordKind(row.kind),
        id=row.id,
        updated_at=int(row.updated_at),
        is_deleted=bool(row.is_deleted),
        ledger_id=row.ledger_id,
        data=dict(row.data or {}),
    )


def to_wire(row: StoredRecord) -> Dict[str, Any]:
    wire = to_record(row).to_dict()
    wire['version'] = int(row.version)
    return wire


def current_version(db: Session, account_id: str) -> int:
    """Highest version stored for the account, 0 when empty"""
    value = db.query(func.max(StoredRecord.version)).filter(
        StoredRecord.account_id == account_id
    ).scalar()
    return int(value or 0)


def pull_records(db: Session, account_id: str, since: int = 0) -> List[Dict[str, Any]]:
    """
    Records with ``version > since``, tombstones included.

    ``since=0`` returns the whole dataset.
    """
    rows = db.query(StoredRecord).filter(
        StoredRecord.account_id == account_id,
        StoredRecord.version > since
    ).order_by(StoredRecord.version, StoredRecord.kind, StoredRecord.id).all()

    records = [to_wire(row) for row in rows]
    _audit(db, account_id, 'pull', len(records), {'since': since})
    db.commit()
    return records


def push_records(db: Session, account_id: str, items: List[Any]) -> PushResult:
    """
    Upsert pushed records.

    Valid records are all accepted; versions not newer than the stored one
    are accepted as no-ops and counted in ``ignored_count``. Malformed
    records are rejected by id.

    Pushes for one account are serialized: the account's revision row is
    locked before ``base_version`` is read and stays locked until commit,
    so concurrent pushes never share a version range.
    """
    result = PushResult()
    collapsed: Dict[tuple, SyncRecord] = {}

    for item in items:
        try:
            record = SyncRecord.from_dict(item)
        except (KeyError, ValueError, TypeError) as e:
            record_id = item.get('id') if isinstance(item, dict) else None
            kind = item.get('kind') if isinstance(item, dict) else None
            rejected_id = str(record_id) if record_id is not None else ''
            result.rejected_ids.append(rejected_id)
            result.rejected_keys.append((str(kind) if kind is not None else '', rejected_id))
            logger.warning(f"Rejected pushed record {record_id!r}: {e!r}")
            continue

        result.accepted_count += 1
        existing = collapsed.get(record.key)
        if existing is not None:
            # duplicate inside the batch
            result.ignored_count += 1
            collapsed[record.key] = pick_winner(existing, record)
        else:
            collapsed[record.key] = record

    with _account_lock(account_id):
        try:
            revision = _lock_revision(db, account_id)
            result.base_version = revision.current_version
            version = result.base_version
            written = 0
            for key in sorted(collapsed):
                record = collapsed[key]
                row = db.get(StoredRecord, (account_id, record.kind.value, record.id))
                current: Optional[SyncRecord] = to_record(row) if row is not None else None

                if not supersedes(record, current):
                    result.ignored_count += 1
                    continue

                if row is None:
                    row = StoredRecord(account_id=account_id, kind=record.kind.value, id=record.id)
                    db.add(row)
                version = max(version + 1, record.updated_at)
                row.ledger_id = record.ledger_id
                row.updated_at = record.updated_at
                row.version = version
                row.is_deleted = record.is_deleted
                row.data = record.data
                written += 1

            revision.current_version = version
            result.version = version
            _audit(db, account_id, 'push', len(items), {
                'written': written,
                'ignored': result.ignored_count,
                'rejected': result.rejected_ids,
            })
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(
        f"Push for {account_id}: {result.accepted_count} accepted "
        f"({written} written, {result.ignored_count} ignored), "
        f"{len(result.rejected_ids)} rejected, version {result.version}"
    )
    return result


def _account_lock(account_id: str) -> threading.Lock:
    """In-process lock for one account (routes run in a thread pool)"""
    with _account_locks_guard:
        lock = _account_locks.get(account_id)
        if lock is None:
            lock = _account_locks[account_id] = threading.Lock()
        return lock


def _lock_revision(db: Session, account_id: str) -> AccountRevision:
    """
    The account's revision row, locked until the transaction ends.

    Created on first push, seeded from the records already stored.
    """
    revision = db.query(AccountRevision).filter(
        AccountRevision.account_id == account_id
    ).with_for_update().first()

    if revision is None:
        revision = AccountRevision(
            account_id=account_id,
            current_version=current_version(db, account_id),
        )
        db.add(revision)
        db.flush()
    return revision


def _audit(db: Session, account_id: str, action: str, record_count: int,
           details: Optional[Dict[str, Any]] = None):
    db.add(SyncAudit(
        account_id=account_id,
        action=action,
        record_count=record_count,
        details=details,
    ))
