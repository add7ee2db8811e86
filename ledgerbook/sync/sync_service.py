# -*- coding: utf-8 -*-
"""
Background Sync Service

A single long-lived thread consumes sync triggers from a queue:
local mutations (debounced), the periodic timer and manual requests.
Triggers arriving while a sync runs are coalesced into at most one
follow-up sync.
"""

import logging
import queue
import threading
import time
from datetime import datetime
from typing import Optional, Callable, Dict, Any, Tuple

from .. import models as ledger_models
from .config import SyncConfig
from .models import RecordKind, SyncMode, SyncResult, SyncStatus
from .sync_manager import SyncManager

logger = logging.getLogger(__name__)

_MUTATION = "mutation"
_MANUAL = "manual"
_RECONFIGURE = "reconfigure"
_STOP = "stop"


class _ManualRequest:
    """Manual sync request; the caller may wait on ``done``."""

    def __init__(self, full: bool):
        self.full = full
        self.done = threading.Event()
        self.result: Optional[SyncResult] = None


class SyncService:
    """
    Background sync service.

    Features:
    - Automatic incremental sync on mutations (debounced) and on interval
    - Manual full calibration sync
    - Coalescing of triggers while a sync is in flight
    - Back-off after an authentication failure
    - Status callbacks, one error report per distinct cause
    """

    def __init__(
        self,
        sync_manager: SyncManager,
        on_status_change: Callable[[SyncStatus], None] = None,
        on_sync_complete: Callable[[SyncResult], None] = None,
        on_error: Callable[[str], None] = None,
    ):
        """
        Args:
            sync_manager: SyncManager instance
            on_status_change: status change callback
            on_sync_complete: called with every finished SyncResult
            on_error: called once per distinct failure cause
        """
        self.sync_manager = sync_manager
        self.on_status_change = on_status_change
        self.on_sync_complete = on_sync_complete
        self.on_error = on_error

        self._queue: "queue.Queue[Tuple[str, Any]]" = queue.Queue()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._status = SyncStatus.IDLE
        self._last_sync: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._reported_cause: Optional[Tuple[str, str]] = None
        self._auth_blocked: Optional[Tuple[str, str, str]] = None

        # Statistics
        self._sync_count = 0
        self._error_count = 0

    @property
    def config(self) -> SyncConfig:
        return self.sync_manager.config

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def interval(self) -> int:
        return self.config.sync_interval_seconds

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def auth_backoff(self) -> bool:
        """Automatic sync suspended until credentials change"""
        return (self._auth_blocked is not None and
                self._auth_blocked == self.config.endpoint_credentials)

    @property
    def last_sync(self) -> Optional[datetime]:
        return self._last_sync

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def _set_status(self, status: SyncStatus):
        """Update status and notify"""
        if self._status != status:
            self._status = status
            if self.on_status_change:
                try:
                    self.on_status_change(status)
                except Exception as e:
                    logger.error(f"Status callback error: {e}")

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def start(self):
        """Start the service thread"""
        if self._running:
            logger.warning("Sync service already running")
            return

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.name = "SyncService"
        self._thread.start()
        ledger_models.add_mutation_listener(self._on_local_mutation)
        logger.info(f"Sync service started (interval={self.interval}s)")

    def stop(self, timeout: float = 5):
        """Stop the service, abandoning an in-flight sync at its next suspension point"""
        if not self._running:
            return
        ledger_models.remove_mutation_listener(self._on_local_mutation)
        self._running = False
        self.sync_manager.cancel()
        self._queue.put((_STOP, None))
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Sync service stopped")

    # ============================================================
    # TRIGGERS
    # ============================================================

    def notify_mutation(self):
        """Signal a local data change. Cheap; safe from any thread."""
        if self._running:
            self._queue.put((_MUTATION, None))

    def _on_local_mutation(self, kind: RecordKind, record_id: str):
        logger.debug(f"Local change {kind.value}:{record_id}, sync requested")
        self.notify_mutation()

    def sync_now(self, full: bool = True, wait: bool = True,
                 timeout: Optional[float] = None) -> Optional[SyncResult]:
        """
        Manual sync. Runs even when automatic sync is off or backed off.

        Args:
            full: full calibration sync (since=0)
            wait: block until the sync has finished
            timeout: maximum wait in seconds

        Returns:
            SyncResult, or None if not waited for (or the wait timed out)
        """
        if not self._running:
            return self._run_sync(SyncMode.FULL if full else SyncMode.INCREMENTAL, manual=True)

        request = _ManualRequest(full)
        self._queue.put((_MANUAL, request))
        if not wait:
            return None
        request.done.wait(timeout)
        return request.result

    def reconfigure(self, config: SyncConfig, client=None) -> bool:
        """
        Apply new settings or credentials.

        Lifts an authentication back-off and re-arms the interval timer.
        """
        applied = self.sync_manager.reconfigure(config, client=client)
        if applied:
            self._auth_blocked = None
            self._reported_cause = None
            if self._running:
                self._queue.put((_RECONFIGURE, None))
        return applied

    # ============================================================
    # LOOP
    # ============================================================

    def _run_loop(self):
        """Main loop: wait for the earliest deadline or the next trigger."""
        next_interval = time.monotonic() + self.interval
        debounce_deadline: Optional[float] = None

        while self._running:
            now = time.monotonic()
            deadline = next_interval if debounce_deadline is None \
                else min(next_interval, debounce_deadline)
            try:
                kind, payload = self._queue.get(timeout=max(0.0, deadline - now))
            except queue.Empty:
                kind, payload = None, None

            if kind == _STOP:
                break

            if kind == _MUTATION:
                if debounce_deadline is None:
                    debounce_deadline = time.monotonic() + self.config.debounce_seconds
                continue

            if kind == _RECONFIGURE:
                next_interval = time.monotonic() + self.interval
                continue

            if kind == _MANUAL:
                mode = SyncMode.FULL if payload.full else SyncMode.INCREMENTAL
                try:
                    payload.result = self._run_sync(mode, manual=True)
                finally:
                    payload.done.set()
                debounce_deadline = self._drain_coalesced(debounce_deadline)
                next_interval = time.monotonic() + self.interval
                continue

            # a deadline expired
            now = time.monotonic()
            due = now >= next_interval
            if debounce_deadline is not None and now >= debounce_deadline:
                debounce_deadline = None
                due = True
            if due:
                next_interval = now + self.interval
                self._auto_sync()
                debounce_deadline = self._drain_coalesced(debounce_deadline)

        # release callers still waiting on manual requests
        while True:
            try:
                kind, payload = self._queue.get_nowait()
            except queue.Empty:
                break
            if kind == _MANUAL:
                payload.done.set()

    def _drain_coalesced(self, debounce_deadline: Optional[float]) -> Optional[float]:
        """
        Collapse mutation triggers that arrived during a sync into one
        follow-up sync. Other triggers are put back.
        """
        pending_mutation = False
        requeue = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item[0] == _MUTATION:
                pending_mutation = True
            else:
                requeue.append(item)
        for item in requeue:
            self._queue.put(item)
        if pending_mutation and debounce_deadline is None:
            return time.monotonic() + self.config.debounce_seconds
        return debounce_deadline

    def _auto_sync(self):
        if not self.config.auto_sync_allowed:
            logger.debug("Automatic sync disabled or not configured")
            return
        if self.auth_backoff:
            logger.debug("Automatic sync backed off after authentication failure")
            return
        self._run_sync(SyncMode.INCREMENTAL, manual=False)

    def _run_sync(self, mode: SyncMode, manual: bool) -> SyncResult:
        """Run one sync through the manager and update service status."""
        self._set_status(SyncStatus.SYNCING)
        result = self.sync_manager.sync(mode)

        if result.skipped:
            # another caller is running a sync; it reports its own outcome
            self._set_status(self.sync_manager.status)
            return result

        if result.success:
            self._sync_count += 1
            self._last_sync = datetime.now()
            self._last_error = None
            self._reported_cause = None
            if manual:
                self._auth_blocked = None
            self._set_status(SyncStatus.IDLE)
            logger.debug(
                f"Sync completed: {result.pulled_count} pulled, "
                f"{result.pushed_count} pushed"
            )
        else:
            self._error_count += 1
            message = result.errors[0] if result.errors else "Unknown error"
            self._last_error = message
            if result.error_type == 'auth':
                self._auth_blocked = self.config.endpoint_credentials
                logger.warning("Automatic sync suspended until credentials change")
            self._set_status(SyncStatus.ERROR)
            self._report_error(result.error_type, message)

        if self.on_sync_complete:
            try:
                self.on_sync_complete(result)
            except Exception as e:
                logger.error(f"Sync complete callback error: {e}")

        return result

    def _report_error(self, error_type: str, message: str):
        """Notify once per distinct cause"""
        cause = (error_type, message)
        if cause == self._reported_cause:
            return
        self._reported_cause = cause
        if self.on_error:
            try:
                self.on_error(message)
            except Exception as e:
                logger.error(f"Error callback error: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Status snapshot for the UI"""
        return {
            'status': self._status.value,
            'state': self.sync_manager.state.value,
            'last_sync': self._last_sync.isoformat() if self._last_sync else None,
            'last_error': self._last_error,
            'sync_count': self._sync_count,
            'error_count': self._error_count,
            'interval': self.interval,
            'pending_push': self.sync_manager.pending_push_count(),
        }


# Global instance (lazy initialization)
_sync_service: Optional[SyncService] = None


def get_sync_service() -> Optional[SyncService]:
    """Global sync service instance"""
    return _sync_service


def init_sync_service(sync_manager: SyncManager, **callbacks) -> SyncService:
    """
    Start the global sync service.

    Args:
        sync_manager: SyncManager instance
        **callbacks: on_status_change, on_sync_complete, on_error

    Returns:
        SyncService instance
    """
    global _sync_service

    if _sync_service:
        _sync_service.stop()

    _sync_service = SyncService(sync_manager=sync_manager, **callbacks)
    _sync_service.start()

    return _sync_service


def stop_sync_service():
    """Stop the global sync service"""
    global _sync_service

    if _sync_service:
        _sync_service.stop()
        _sync_service = None
