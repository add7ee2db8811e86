# -*- coding: utf-8 -*-
"""
Sync Merger - Reconciler

Applies records pulled from the remote to the local store and selects
the records to push back. Whole-record last-writer-wins by ``updated_at``;
tombstones are merged exactly like any other version.

The decision for a record depends only on the two versions being compared,
so applying a batch twice or in any order gives the same local state.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import MergeStats, SyncRecord, pick_winner, supersedes
from .record_store import RecordStore, ValidationError

logger = logging.getLogger(__name__)

Incoming = Union[SyncRecord, Dict[str, Any]]


def resolve(local: Optional[SyncRecord], remote: SyncRecord) -> SyncRecord:
    """
    Winner between the local and an incoming version of one record.

    - no local version: remote
    - remote strictly newer: remote (a newer tombstone deletes)
    - equal timestamps: local, unless remote is a tombstone and local is not
    - otherwise: local
    """
    if supersedes(remote, local):
        return remote
    return local


def coerce_record(item: Incoming) -> SyncRecord:
    """
    Wire dict or SyncRecord -> SyncRecord.

    Raises:
        ValidationError: malformed record
    """
    if isinstance(item, SyncRecord):
        return item
    try:
        return SyncRecord.from_dict(item)
    except (KeyError, ValueError, TypeError) as e:
        record_id = item.get('id') if isinstance(item, dict) else None
        kind = item.get('kind') if isinstance(item, dict) else None
        raise ValidationError(
            f"malformed record: {e!r}",
            kind=str(kind) if kind is not None else None,
            record_id=str(record_id) if record_id is not None else None,
        ) from e


class Reconciler:
    """
    Reconciler.

    Usage:
        reconciler = Reconciler(store)
        stats = reconciler.merge(pulled)
        batch = reconciler.push_candidates(config.last_push_version)
    """

    def __init__(self, store: RecordStore):
        """
        Args:
            store: local RecordStore
        """
        self.store = store

    def merge(self, incoming: Iterable[Incoming]) -> MergeStats:
        """
        Merge a batch of remote records into the local store.

        Malformed records are skipped and reported in ``skipped_reasons``;
        the rest of the batch is still applied.

        Returns:
            MergeStats
        """
        stats = MergeStats()
        collapsed: Dict[tuple, SyncRecord] = {}

        for item in incoming:
            try:
                record = coerce_record(item)
            except ValidationError as e:
                stats.skipped += 1
                stats.skipped_reasons.append(_describe(e))
                logger.warning(f"Skipping incoming record: {_describe(e)}")
                continue

            if record.updated_at > stats.max_updated_at:
                stats.max_updated_at = record.updated_at
            version = _server_version(item, record)
            if version > stats.max_version:
                stats.max_version = version

            existing = collapsed.get(record.key)
            collapsed[record.key] = record if existing is None else pick_winner(existing, record)

        for key, record in collapsed.items():
            stats.remote_versions[key] = (record.updated_at, record.is_deleted)

        for key in sorted(collapsed):
            self._merge_one(collapsed[key], stats)

        logger.info(
            f"Merge: {stats.inserted} inserted, {stats.updated} updated, "
            f"{stats.deleted} deleted, {stats.ignored} ignored, "
            f"{stats.skipped} skipped"
        )
        return stats

    def _merge_one(self, remote: SyncRecord, stats: MergeStats):
        # read-compare-write under the store lock so a concurrent local
        # edit cannot slip in between
        with self.store.lock:
            local = self.store.get(remote.kind, remote.id)
            winner = resolve(local, remote)

            if winner is local:
                stats.ignored += 1
                stats.ignored_ids.append(remote.id)
                logger.debug(
                    f"Conflict ignored for {remote.kind.value}:{remote.id} "
                    f"(local {local.updated_at} >= remote {remote.updated_at})"
                )
                return

            try:
                self.store.upsert(remote)
            except ValidationError as e:
                stats.skipped += 1
                stats.skipped_reasons.append(_describe(e))
                logger.warning(f"Skipping incoming record: {_describe(e)}")
                return

        if local is None:
            stats.inserted += 1
        elif remote.is_deleted and not local.is_deleted:
            stats.deleted += 1
        else:
            stats.updated += 1

    def push_candidates(self, push_watermark: int, full: bool = False) -> List[SyncRecord]:
        """
        Local records to send, tombstones included.

        Args:
            push_watermark: last confirmed push watermark
            full: send every local record (calibration sync)
        """
        if full:
            return self.store.get_all()
        return self.store.get_changed_since(push_watermark)


def _server_version(item: Incoming, record: SyncRecord) -> int:
    version = item.get('version') if isinstance(item, dict) else None
    if isinstance(version, int) and not isinstance(version, bool):
        return version
    return record.updated_at


def _describe(error: ValidationError) -> str:
    ident = f"{error.kind or '?'}:{error.record_id or '?'}"
    return f"{ident} {error.reason}"
