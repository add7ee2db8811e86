# -*- coding: utf-8 -*-
"""
Sync Configuration

Cloud sync settings and the persisted sync cursors.
Stored in the sync_config table as JSON values.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, fields
from typing import Optional, Dict, Any, Tuple

from ..db import get_connection

logger = logging.getLogger(__name__)

MIN_SYNC_INTERVAL = 10  # seconds


@dataclass
class SyncConfig:
    """Sync configuration."""

    # Settings
    cloud_sync_enabled: bool = False
    sync_interval_seconds: int = 60
    debounce_seconds: float = 2.0
    request_timeout: float = 15.0

    # Endpoint credentials
    endpoint_url: str = ""
    auth_token: str = ""
    user_id: str = ""

    # Sync cursors
    last_sync_version: int = 0
    last_push_version: int = 0
    last_sync_time: str = ""

    def __post_init__(self):
        self.sync_interval_seconds = max(MIN_SYNC_INTERVAL, int(self.sync_interval_seconds))

    @property
    def is_configured(self) -> bool:
        """Are endpoint credentials present?"""
        return bool(self.endpoint_url and self.auth_token)

    @property
    def auto_sync_allowed(self) -> bool:
        """Automatic mode needs the switch on and credentials present."""
        return self.cloud_sync_enabled and self.is_configured

    @property
    def endpoint_credentials(self) -> Tuple[str, str, str]:
        return (self.endpoint_url, self.auth_token, self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        """Config as dict."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncConfig':
        """Config from dict; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def ensure_config_table(db_path: str):
    """Create the sync_config table."""
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_config (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        conn.commit()
    finally:
        conn.close()


def get_sync_config(db_path: str) -> SyncConfig:
    """Load the sync config."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        rows = conn.execute("SELECT key, value FROM sync_config").fetchall()

        data = {}
        for key, value in rows:
            try:
                data[key] = json.loads(value)
            except (TypeError, ValueError):
                logger.warning(f"Unreadable sync_config value for {key!r}, ignoring")

        return SyncConfig.from_dict(data)
    finally:
        conn.close()


def save_sync_config(db_path: str, config: SyncConfig):
    """Save the whole sync config."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        for key, value in config.to_dict().items():
            conn.execute("""
                INSERT OR REPLACE INTO sync_config (key, value)
                VALUES (?, ?)
            """, (key, json.dumps(value)))
        conn.commit()
    finally:
        conn.close()


def save_config_value(db_path: str, key: str, value: Any):
    """Save a single config value."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT OR REPLACE INTO sync_config (key, value)
            VALUES (?, ?)
        """, (key, json.dumps(value)))
        conn.commit()
    finally:
        conn.close()


def get_config_value(db_path: str, key: str, default: Any = None) -> Any:
    """Read a single config value."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT value FROM sync_config WHERE key = ?", (key,)
        ).fetchone()
        if row:
            try:
                return json.loads(row[0])
            except (TypeError, ValueError):
                return row[0]
        return default
    finally:
        conn.close()


def clear_sync_config(db_path: str, keep_cursors: bool = False):
    """
    Clear the sync config (sign-out).

    Args:
        keep_cursors: keep last_sync_version / last_push_version
    """
    conn = get_connection(db_path)
    try:
        if keep_cursors:
            conn.execute(
                "DELETE FROM sync_config "
                "WHERE key NOT IN ('last_sync_version', 'last_push_version')"
            )
        else:
            conn.execute("DELETE FROM sync_config")
        conn.commit()
    except sqlite3.OperationalError:
        # table not created yet
        pass
    finally:
        conn.close()
