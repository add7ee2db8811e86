# -*- coding: utf-8 -*-
"""
Sync Manager

Sync orchestrator: runs one probe -> pull -> merge -> push cycle at a
time and owns the persisted sync cursors.

    IDLE -> PROBING -> PULLING -> MERGING -> PUSHING -> IDLE
    any in-flight state -> ERROR -> IDLE
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from .config import SyncConfig, get_sync_config, save_sync_config
from .merger import Reconciler
from .models import (
    MergeStats, PushResult, SyncDirection, SyncMode, SyncOutcome, SyncRecord,
    SyncResult, SyncState, SyncStatus,
)
from .record_store import RecordStore
from .sync_client import AuthError, NetworkError, SyncClient
from .sync_log import SyncLog

logger = logging.getLogger(__name__)

_PHASE_DIRECTION = {
    SyncState.PROBING: SyncDirection.PROBE,
    SyncState.PULLING: SyncDirection.PULL,
    SyncState.MERGING: SyncDirection.PULL,
    SyncState.PUSHING: SyncDirection.PUSH,
}

# Ids listed in a log message before truncating
_LOG_ID_LIMIT = 20


class SyncCancelled(Exception):
    """Raised at a suspension point after cancel()"""
    pass


class SyncManager:
    """
    Sync orchestrator.

    Usage:
        manager = SyncManager(db_path)
        result = manager.sync()                 # incremental
        result = manager.sync(SyncMode.FULL)    # manual calibration
    """

    PUSH_BATCH_SIZE = 500

    def __init__(
        self,
        db_path: str,
        config: Optional[SyncConfig] = None,
        client: Optional[SyncClient] = None,
        store: Optional[RecordStore] = None,
        sync_log: Optional[SyncLog] = None,
    ):
        """
        Args:
            db_path: SQLite database path
            config: sync config (loaded from the database if omitted)
            client: remote endpoint client (built from config if omitted)
            store: local record store
            sync_log: sync log
        """
        self.db_path = db_path
        self.store = store or RecordStore(db_path)
        self.sync_log = sync_log or SyncLog(db_path)
        self.config = config or get_sync_config(db_path)
        self.client = client
        if self.client is None and self.config.is_configured:
            self.client = SyncClient(self.config)
        self.reconciler = Reconciler(self.store)

        self._state = SyncState.IDLE
        self._last_failed = False
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()

        # Callbacks
        self.on_state_change: Optional[Callable[[SyncState], None]] = None
        self.on_sync_complete: Optional[Callable[[SyncResult], None]] = None

    # ============================================================
    # STATE
    # ============================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def status(self) -> SyncStatus:
        """Aggregate status for the UI"""
        if self._state not in (SyncState.IDLE, SyncState.ERROR):
            return SyncStatus.SYNCING
        if self._state == SyncState.ERROR or self._last_failed:
            return SyncStatus.ERROR
        return SyncStatus.IDLE

    @property
    def is_busy(self) -> bool:
        return self._state != SyncState.IDLE

    def _set_state(self, state: SyncState):
        self._state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.error(f"State callback error: {e}")

    def _enter(self, state: SyncState):
        """Move to the next phase; a suspension point for cancellation."""
        if self._cancel_event.is_set():
            raise SyncCancelled("sync cancelled")
        self._set_state(state)

    def cancel(self):
        """Abandon the in-flight sync at its next suspension point."""
        self._cancel_event.set()

    # ============================================================
    # CONFIGURATION
    # ============================================================

    def reconfigure(self, config: SyncConfig, client: Optional[SyncClient] = None) -> bool:
        """
        Replace settings and credentials.

        Cursors are carried over from the current config. Refused while a
        sync is in flight.

        Returns:
            True if applied
        """
        with self._lock:
            if self._state != SyncState.IDLE:
                logger.warning("Reconfigure refused: sync in progress")
                return False
            config.last_sync_version = max(config.last_sync_version, self.config.last_sync_version)
            config.last_push_version = max(config.last_push_version, self.config.last_push_version)
            config.last_sync_time = config.last_sync_time or self.config.last_sync_time
            self.config = config
            self.client = client or (SyncClient(config) if config.is_configured else None)
            self._last_failed = False
            save_sync_config(self.db_path, config)
        logger.info("Sync configuration updated")
        return True

    # ============================================================
    # SYNC
    # ============================================================

    def sync(self, mode: SyncMode = SyncMode.INCREMENTAL) -> SyncResult:
        """
        Run one sync attempt.

        Never raises; failures are logged and reported in the result.
        If another attempt is in flight the call returns at once with
        ``skipped=True``.
        """
        with self._lock:
            if self._state != SyncState.IDLE:
                return SyncResult(
                    success=False, mode=mode, skipped=True,
                    errors=["Sync already in progress"],
                    last_sync_version=self.config.last_sync_version,
                )
            self._cancel_event.clear()
            self._set_state(SyncState.PROBING)

        start_time = time.time()
        result = SyncResult(success=False, mode=mode)
        try:
            self._perform_sync(mode, result)
            result.success = True
            self._last_failed = False
        except SyncCancelled as e:
            self._fail(result, 'cancelled', str(e))
        except AuthError as e:
            self._fail(result, 'auth', f"Authentication failed: {e}")
        except NetworkError as e:
            self._fail(result, 'network', f"Network error: {e}")
        except Exception as e:
            logger.exception("Unexpected sync error")
            self._fail(result, 'internal', f"Unexpected error: {e}")
        finally:
            result.last_sync_version = self.config.last_sync_version
            result.sync_duration_ms = (time.time() - start_time) * 1000
            with self._lock:
                self._set_state(SyncState.IDLE)

        if self.on_sync_complete:
            try:
                self.on_sync_complete(result)
            except Exception as e:
                logger.error(f"Sync complete callback error: {e}")

        return result

    def _fail(self, result: SyncResult, error_type: str, message: str):
        direction = _PHASE_DIRECTION.get(self._state, SyncDirection.PROBE)
        logger.error(f"Sync failed during {direction.value}: {message}")
        result.error_type = error_type
        result.errors.append(message)
        self._last_failed = True
        self._set_state(SyncState.ERROR)
        self.sync_log.record(direction, SyncOutcome.ERROR, 0, message)

    def _perform_sync(self, mode: SyncMode, result: SyncResult):
        if self.client is None:
            raise AuthError("Sync endpoint is not configured")

        full = mode == SyncMode.FULL
        since = 0 if full else self.config.last_sync_version

        # 1. Probe
        remote_version = self.client.probe_version()
        logger.debug(f"Remote version {remote_version}, local watermark {since}")

        # 2. Pull
        pulled: List[Any] = []
        if full or remote_version > since:
            self._enter(SyncState.PULLING)
            pulled = self.client.pull(since)
        result.pulled_count = len(pulled)

        # 3. Merge
        self._enter(SyncState.MERGING)
        stats = self.reconciler.merge(pulled)
        result.merge = stats
        self._log_merge(stats, len(pulled), since)

        # 4. Push
        self._enter(SyncState.PUSHING)
        read_cursor = max(self.config.last_sync_version, stats.max_version)
        push_watermark, read_cursor = self._push(full, stats, result, read_cursor)

        # 5. Cursors, only after both directions completed
        self.config.last_sync_version = max(self.config.last_sync_version, read_cursor)
        self.config.last_push_version = max(self.config.last_push_version, push_watermark)
        self.config.last_sync_time = datetime.now().isoformat()
        save_sync_config(self.db_path, self.config)

        logger.info(
            f"Sync ({mode.value}) done: {result.pulled_count} pulled, "
            f"{result.pushed_count} pushed, {len(result.rejected_ids)} rejected, "
            f"watermark {self.config.last_sync_version}"
        )

    def _push(self, full: bool, stats: MergeStats, result: SyncResult, read_cursor: int):
        """
        Push the candidate set in batches.

        Candidates the remote already holds at the same version (just
        pulled) are not sent but still count as confirmed.

        The read cursor follows a push only while the remote reports that
        nothing else was written since the cursor, so records other devices
        push in between are still pulled next time.

        Returns:
            (new push watermark, new read cursor)
        """
        old_watermark = self.config.last_push_version
        batch = self.reconciler.push_candidates(old_watermark, full=full)
        if not batch:
            return old_watermark, read_cursor

        to_send = [
            r for r in batch
            if stats.remote_versions.get(r.key) != (r.updated_at, r.is_deleted)
        ]

        rejected: Set[tuple] = set()
        accepted = 0
        for start in range(0, len(to_send), self.PUSH_BATCH_SIZE):
            if start:
                self._enter(SyncState.PUSHING)
            chunk = to_send[start:start + self.PUSH_BATCH_SIZE]
            push_result = self.client.push(chunk)
            accepted += push_result.accepted_count
            if push_result.base_version <= read_cursor:
                read_cursor = max(read_cursor, push_result.version)
            rejected.update(_rejected_keys(chunk, push_result))

        result.pushed_count = len([r for r in to_send if r.key not in rejected])
        result.rejected_ids = sorted({record_id for _, record_id in rejected})

        watermark = _confirmed_watermark(batch, rejected, old_watermark)

        if rejected:
            self.sync_log.record(
                SyncDirection.PUSH, SyncOutcome.PARTIAL, result.pushed_count,
                f"{accepted} accepted, {len(rejected)} rejected: "
                f"{_format_ids(result.rejected_ids)}"
            )
        else:
            self.sync_log.record(
                SyncDirection.PUSH, SyncOutcome.OK, result.pushed_count,
                f"{accepted} accepted"
            )
        return watermark, read_cursor

    def _log_merge(self, stats: MergeStats, pulled_count: int, since: int):
        if stats.skipped:
            for reason in stats.skipped_reasons:
                self.sync_log.record(SyncDirection.PULL, SyncOutcome.ERROR, 1,
                                     f"Skipped record {reason}")
        if stats.ignored:
            self.sync_log.record(
                SyncDirection.PULL, SyncOutcome.OK, stats.ignored,
                f"Conflict ignored, local newer: {_format_ids(stats.ignored_ids)}"
            )
        outcome = SyncOutcome.PARTIAL if stats.skipped else SyncOutcome.OK
        self.sync_log.record(
            SyncDirection.PULL, outcome, pulled_count,
            f"since={since}: {stats.inserted} inserted, {stats.updated} updated, "
            f"{stats.deleted} deleted, {stats.ignored} ignored, {stats.skipped} skipped"
        )

    # ============================================================
    # STATUS
    # ============================================================

    def pending_push_count(self) -> int:
        """Local records not yet confirmed by a push"""
        return self.store.count_changed_since(self.config.last_push_version)

    def get_status_info(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'state': self._state.value,
            'is_configured': self.config.is_configured,
            'cloud_sync_enabled': self.config.cloud_sync_enabled,
            'last_sync_version': self.config.last_sync_version,
            'last_push_version': self.config.last_push_version,
            'last_sync_time': self.config.last_sync_time or None,
            'pending_push': self.pending_push_count(),
        }


def _rejected_keys(chunk: List[SyncRecord], push_result: PushResult) -> Set[tuple]:
    """
    Keys of the chunk's records the remote refused.

    Bare ids the remote could not qualify with a kind match every record
    in the chunk carrying that id.
    """
    chunk_keys = {r.key for r in chunk}
    matched = {key for key in push_result.rejected_keys if key in chunk_keys}
    loose_ids = set(push_result.rejected_ids) - {record_id for _, record_id in matched}
    matched.update(r.key for r in chunk if r.id in loose_ids)
    return matched


def _confirmed_watermark(batch: List[SyncRecord], rejected: Set[tuple], old: int) -> int:
    """
    Highest ``updated_at`` that the push confirmed without a gap.

    Stops just below the oldest rejected record so it stays in the next
    candidate set.
    """
    if not rejected:
        return max([old] + [r.updated_at for r in batch])
    oldest_rejected = min(r.updated_at for r in batch if r.key in rejected) \
        if any(r.key in rejected for r in batch) else None
    confirmed = [
        r.updated_at for r in batch
        if r.key not in rejected and (oldest_rejected is None or r.updated_at < oldest_rejected)
    ]
    return max([old] + confirmed)


def _format_ids(ids: List[str]) -> str:
    shown = ', '.join(ids[:_LOG_ID_LIMIT])
    if len(ids) > _LOG_ID_LIMIT:
        shown += f" (+{len(ids) - _LOG_ID_LIMIT} more)"
    return shown
