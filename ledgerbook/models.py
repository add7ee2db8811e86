# -*- coding: utf-8 -*-
"""
Ledger domain operations.

Every mutation goes through ``RecordStore.write_local`` so it gets a fresh
``updated_at``; deletions are soft (tombstones) so they synchronize.
Registered mutation listeners are told about every change, which is how
the sync service learns that an automatic sync is due.
"""

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from .sync.models import RecordKind, SyncRecord
from .sync.record_store import RecordStore, now_ms

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("expense", "income")
DEFAULT_THEME_COLOR = "#007AFF"

# Tombstones are kept at least this long before compaction
TOMBSTONE_RETENTION_DAYS = 30

_mutation_listeners: List[Callable[[RecordKind, str], None]] = []


def add_mutation_listener(listener: Callable[[RecordKind, str], None]) -> None:
    if listener not in _mutation_listeners:
        _mutation_listeners.append(listener)


def remove_mutation_listener(listener: Callable[[RecordKind, str], None]) -> None:
    if listener in _mutation_listeners:
        _mutation_listeners.remove(listener)


def _notify(kind: RecordKind, record_id: str) -> None:
    for listener in list(_mutation_listeners):
        try:
            listener(kind, record_id)
        except Exception as e:
            logger.error(f"Mutation listener error: {e}")


def record_to_dict(record: SyncRecord) -> Dict[str, Any]:
    """Flat dict view of a record for callers."""
    row = dict(record.data)
    row.update({
        'id': record.id,
        'ledger_id': record.ledger_id,
        'updated_at': record.updated_at,
        'is_deleted': record.is_deleted,
    })
    return row


def _new_id() -> str:
    return uuid.uuid4().hex


def _require(store: RecordStore, kind: RecordKind, record_id: str) -> SyncRecord:
    record = store.get(kind, record_id)
    if record is None:
        raise KeyError(f"{kind.value} {record_id} not found")
    return record


def _create(store: RecordStore, kind: RecordKind, ledger_id: Optional[str],
            data: Dict[str, Any]) -> Dict[str, Any]:
    record = store.write_local(SyncRecord(
        kind=kind, id=_new_id(), updated_at=0, ledger_id=ledger_id, data=data,
    ))
    _notify(kind, record.id)
    return record_to_dict(record)


def _modify(store: RecordStore, kind: RecordKind, record_id: str,
            changes: Dict[str, Any]) -> Dict[str, Any]:
    with store.lock:
        record = _require(store, kind, record_id)
        if record.is_deleted:
            raise ValueError(f"{kind.value} {record_id} is deleted")
        record.data = {**record.data, **changes}
        store.write_local(record)
    _notify(kind, record_id)
    return record_to_dict(record)


def _set_deleted(store: RecordStore, kind: RecordKind, record_id: str,
                 deleted: bool) -> bool:
    """Flip the tombstone flag; the payload is kept so a delete can be undone."""
    with store.lock:
        record = _require(store, kind, record_id)
        if record.is_deleted == deleted:
            return False
        record.is_deleted = deleted
        store.write_local(record)
    _notify(kind, record_id)
    return True


def _list(store: RecordStore, kind: RecordKind,
          ledger_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return [record_to_dict(r) for r in store.list_live(kind, ledger_id)]


# ============================================================
# LEDGERS
# ============================================================

def add_ledger(store: RecordStore, name: str,
               theme_color: str = DEFAULT_THEME_COLOR) -> Dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise ValueError("Ledger name is required")
    return _create(store, RecordKind.LEDGER, None, {
        'name': name,
        'theme_color': theme_color or DEFAULT_THEME_COLOR,
        'created_at': now_ms(),
    })


def update_ledger(store: RecordStore, ledger_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    return _modify(store, RecordKind.LEDGER, ledger_id,
                   _pick(changes, ('name', 'theme_color')))


def delete_ledger(store: RecordStore, ledger_id: str) -> int:
    """
    Tombstone a ledger together with its transactions, categories and groups.

    Returns:
        Number of records tombstoned, the ledger included
    """
    count = 0
    with store.lock:
        _require(store, RecordKind.LEDGER, ledger_id)
        for kind in (RecordKind.TRANSACTION, RecordKind.CATEGORY, RecordKind.GROUP):
            for record in store.list_live(kind, ledger_id):
                record.is_deleted = True
                store.write_local(record)
                _notify(kind, record.id)
                count += 1
        if _set_deleted(store, RecordKind.LEDGER, ledger_id, True):
            count += 1
    logger.info(f"Ledger {ledger_id} deleted ({count} records tombstoned)")
    return count


def list_ledgers(store: RecordStore) -> List[Dict[str, Any]]:
    return sorted(_list(store, RecordKind.LEDGER), key=lambda r: r.get('created_at') or 0)


# ============================================================
# CATEGORIES AND GROUPS
# ============================================================

def add_category(store: RecordStore, ledger_id: Optional[str], name: str,
                 type: str = "expense", icon: str = "Circle",
                 sort_order: int = 0, is_custom: bool = True) -> Dict[str, Any]:
    if type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown category type: {type}")
    return _create(store, RecordKind.CATEGORY, ledger_id, {
        'name': name,
        'icon': icon,
        'type': type,
        'sort_order': int(sort_order),
        'is_custom': bool(is_custom),
    })


def update_category(store: RecordStore, category_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    if 'type' in changes and changes['type'] not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown category type: {changes['type']}")
    return _modify(store, RecordKind.CATEGORY, category_id,
                   _pick(changes, ('name', 'icon', 'type', 'sort_order')))


def delete_category(store: RecordStore, category_id: str) -> bool:
    return _set_deleted(store, RecordKind.CATEGORY, category_id, True)


def list_categories(store: RecordStore, ledger_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return sorted(_list(store, RecordKind.CATEGORY, ledger_id),
                  key=lambda r: (r.get('sort_order') or 0, r.get('name') or ''))


def add_group(store: RecordStore, ledger_id: Optional[str], name: str,
              category_ids: Optional[List[str]] = None, sort_order: int = 0) -> Dict[str, Any]:
    return _create(store, RecordKind.GROUP, ledger_id, {
        'name': name,
        'category_ids': list(category_ids or []),
        'sort_order': int(sort_order),
    })


def update_group(store: RecordStore, group_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    return _modify(store, RecordKind.GROUP, group_id,
                   _pick(changes, ('name', 'category_ids', 'sort_order')))


def delete_group(store: RecordStore, group_id: str) -> bool:
    return _set_deleted(store, RecordKind.GROUP, group_id, True)


def list_groups(store: RecordStore, ledger_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return sorted(_list(store, RecordKind.GROUP, ledger_id),
                  key=lambda r: r.get('sort_order') or 0)


# ============================================================
# TRANSACTIONS
# ============================================================

def _validate_transaction(data: Dict[str, Any]) -> None:
    if 'amount' in data:
        amount = data['amount']
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValueError(f"Invalid amount: {amount!r}")
        if amount < 0:
            raise ValueError("Amount must not be negative")
    if 'type' in data and data['type'] not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type: {data['type']}")


def add_transaction(store: RecordStore, ledger_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a transaction in a ledger.

    ``data`` keys: amount, type, category_id, date (epoch millis), note.
    """
    if not ledger_id:
        raise ValueError("Transaction needs a ledger")
    payload = {
        'amount': data.get('amount', 0),
        'type': data.get('type', 'expense'),
        'category_id': data.get('category_id'),
        'date': data.get('date') or now_ms(),
        'note': data.get('note') or '',
        'created_at': now_ms(),
    }
    _validate_transaction(payload)
    return _create(store, RecordKind.TRANSACTION, ledger_id, payload)


def update_transaction(store: RecordStore, transaction_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    changes = _pick(changes, ('amount', 'type', 'category_id', 'date', 'note'))
    _validate_transaction(changes)
    return _modify(store, RecordKind.TRANSACTION, transaction_id, changes)


def delete_transaction(store: RecordStore, transaction_id: str) -> bool:
    return _set_deleted(store, RecordKind.TRANSACTION, transaction_id, True)


def restore_transaction(store: RecordStore, transaction_id: str) -> bool:
    """Undo a delete. The restored version gets a fresh timestamp."""
    return _set_deleted(store, RecordKind.TRANSACTION, transaction_id, False)


def list_transactions(store: RecordStore, ledger_id: str) -> List[Dict[str, Any]]:
    return sorted(_list(store, RecordKind.TRANSACTION, ledger_id),
                  key=lambda r: (r.get('date') or 0, r['id']), reverse=True)


# ============================================================
# MAINTENANCE
# ============================================================

def compact(store: RecordStore, push_watermark: int,
            retention_days: int = TOMBSTONE_RETENTION_DAYS) -> int:
    """
    Remove tombstones that were pushed and are older than the retention window.

    Not part of a sync cycle; run it from maintenance code.
    """
    older_than = now_ms() - retention_days * 24 * 60 * 60 * 1000
    return store.compact_tombstones(push_watermark, older_than)


def _pick(data: Dict[str, Any], keys) -> Dict[str, Any]:
    return {k: data[k] for k in keys if k in data}
