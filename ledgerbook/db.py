# -*- coding: utf-8 -*-
import logging
import os
import sqlite3
from typing import Optional

logger = logging.getLogger(__name__)

DOCS_DIR = os.path.join(os.path.expanduser("~"), ".ledgerbook")
DB_PATH = os.path.join(DOCS_DIR, "ledgerbook.db")

# Columns every synchronized table carries
SYNC_COLUMNS_DDL = """
    id TEXT PRIMARY KEY,
    ledger_id TEXT,
    updated_at INTEGER NOT NULL,
    is_deleted INTEGER NOT NULL DEFAULT 0
"""

TABLES_DDL = {
    "ledgers": f"""
        CREATE TABLE IF NOT EXISTS ledgers (
            {SYNC_COLUMNS_DDL},
            name TEXT NOT NULL DEFAULT '',
            theme_color TEXT DEFAULT '#007AFF',
            created_at INTEGER
        )
    """,
    "categories": f"""
        CREATE TABLE IF NOT EXISTS categories (
            {SYNC_COLUMNS_DDL},
            name TEXT NOT NULL DEFAULT '',
            icon TEXT DEFAULT 'Circle',
            type TEXT DEFAULT 'expense',
            sort_order INTEGER DEFAULT 0,
            is_custom INTEGER DEFAULT 0
        )
    """,
    "category_groups": f"""
        CREATE TABLE IF NOT EXISTS category_groups (
            {SYNC_COLUMNS_DDL},
            name TEXT NOT NULL DEFAULT '',
            category_ids TEXT DEFAULT '[]',
            sort_order INTEGER DEFAULT 0
        )
    """,
    "transactions": f"""
        CREATE TABLE IF NOT EXISTS transactions (
            {SYNC_COLUMNS_DDL},
            amount REAL NOT NULL DEFAULT 0,
            type TEXT DEFAULT 'expense',
            category_id TEXT,
            date INTEGER,
            note TEXT DEFAULT '',
            created_at INTEGER
        )
    """,
}


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    pragmas = [
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        "PRAGMA temp_store=MEMORY",
        "PRAGMA wal_autocheckpoint=1000",
    ]
    for pragma in pragmas:
        try:
            conn.execute(pragma)
        except sqlite3.DatabaseError:
            continue
    return conn


def initialize_database(db_path: Optional[str] = None) -> None:
    """Create the ledger tables and their sync indexes."""

    path = db_path or DB_PATH
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    conn = get_connection(path)
    try:
        cur = conn.cursor()
        for table_name, ddl in TABLES_DDL.items():
            cur.execute(ddl)
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{table_name}_updated_at "
                f"ON {table_name}(updated_at)"
            )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_transactions_ledger "
            "ON transactions(ledger_id, is_deleted)"
        )
        conn.commit()
    finally:
        conn.close()
    logger.debug(f"Database initialised at {path}")
