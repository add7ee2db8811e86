# -*- coding: utf-8 -*-
"""
Database connection management
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

logger = logging.getLogger(__name__)


def _create_engine(url: str):
    if url.startswith("sqlite"):
        # sync routes run in the thread pool
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, pool_size=10, max_overflow=20)


engine = _create_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind=None):
    """Create the record and audit tables if missing."""
    from . import models  # noqa: F401  registers the tables on Base

    Base.metadata.create_all(bind=bind or engine)
    logger.info(f"Sync tables ready on {(bind or engine).url.render_as_string(hide_password=True)}")


def get_db():
    """Request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
