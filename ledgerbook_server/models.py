# -*- coding: utf-8 -*-
"""
Sync Server Database Models

One row per (account, kind, id); the newest version by ``updated_at``
is kept, tombstones included. ``version`` orders writes per account and
is the cursor clients pull from.
"""

from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, DateTime, Index, JSON
)
from sqlalchemy.sql import func

from .database import Base


class StoredRecord(Base):
    """Latest known version of a synchronized record"""
    __tablename__ = "sync_records"

    account_id = Column(String(100), primary_key=True)
    kind = Column(String(20), primary_key=True)
    id = Column(String(100), primary_key=True)

    ledger_id = Column(String(100), nullable=True)
    updated_at = Column(BigInteger, nullable=False)  # client epoch millis
    version = Column(BigInteger, nullable=False)  # server change sequence
    is_deleted = Column(Boolean, default=False, nullable=False)
    data = Column(JSON, nullable=False)

    received_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_sync_records_account_version', 'account_id', 'version'),
    )


class AccountRevision(Base):
    """Per-account write counter; locked for the duration of a push"""
    __tablename__ = "account_revisions"

    account_id = Column(String(100), primary_key=True)
    current_version = Column(BigInteger, default=0, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class SyncAudit(Base):
    """Push/pull audit log (debugging)"""
    __tablename__ = "sync_audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(100), index=True)
    action = Column(String(20))  # push, pull
    record_count = Column(Integer, default=0)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
