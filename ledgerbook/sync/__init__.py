# -*- coding: utf-8 -*-
"""
Ledgerbook Sync Module

Keeps the local ledger database consistent across devices through a
remote sync endpoint. Every record carries ``updated_at`` and an
``is_deleted`` tombstone flag.

Conflict resolution: Last-Write-Wins on the whole record (``updated_at``);
on equal timestamps a tombstone beats a live record, otherwise local wins.
"""

from .models import (
    RecordKind,
    SyncRecord,
    SyncStatus,
    SyncState,
    SyncMode,
    SyncDirection,
    SyncOutcome,
    SyncResult,
    SyncLogEntry,
    PushResult,
    MergeStats,
    RECORD_TABLES,
    supersedes,
    pick_winner,
)
from .config import SyncConfig, get_sync_config, save_sync_config, clear_sync_config
from .record_store import RecordStore, ValidationError
from .sync_client import SyncClient, NetworkError, AuthError
from .merger import Reconciler
from .sync_log import SyncLog
from .sync_manager import SyncManager
from .sync_service import (
    SyncService,
    get_sync_service,
    init_sync_service,
    stop_sync_service,
)

__all__ = [
    # Models
    'RecordKind',
    'SyncRecord',
    'SyncStatus',
    'SyncState',
    'SyncMode',
    'SyncDirection',
    'SyncOutcome',
    'SyncResult',
    'SyncLogEntry',
    'PushResult',
    'MergeStats',
    'RECORD_TABLES',
    'supersedes',
    'pick_winner',
    # Config
    'SyncConfig',
    'get_sync_config',
    'save_sync_config',
    'clear_sync_config',
    # Core
    'RecordStore',
    'ValidationError',
    'SyncClient',
    'NetworkError',
    'AuthError',
    'Reconciler',
    'SyncLog',
    'SyncManager',
    # Background Service
    'SyncService',
    'get_sync_service',
    'init_sync_service',
    'stop_sync_service',
]
