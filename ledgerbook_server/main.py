# -*- coding: utf-8 -*-
"""
Ledgerbook Sync Server

Remote record store for multi-device ledger sync: version probe,
incremental pull and idempotent push.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List

from fastapi import FastAPI, Depends, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .auth import get_current_account
from .config import settings
from .database import get_db, init_db
from . import record_service

# Logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Ledgerbook Sync Server",
    version="1.0.0",
    description="Last-writer-wins record store for ledger sync"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# SCHEMAS
# ============================================================

class VersionResponse(BaseModel):
    version: int


class PullResponse(BaseModel):
    version: int
    records: List[Dict[str, Any]] = []


class PushRequest(BaseModel):
    # kept loose so malformed records are rejected one by one, not as a 422
    records: List[Any] = []


class PushResponse(BaseModel):
    accepted_count: int
    rejected_ids: List[str] = []
    # same records as rejected_ids, qualified with their kind
    rejected: List[Dict[str, str]] = []
    ignored_count: int = 0
    version: int
    base_version: int = 0


# ============================================================
# STARTUP
# ============================================================

@app.on_event("startup")
def startup():
    """Create tables on startup"""
    init_db()
    logger.info("Sync server started")


# ============================================================
# HEALTH
# ============================================================

@app.get("/api/health")
def health_check():
    """Server health check"""
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


# ============================================================
# SYNC ENDPOINTS
# ============================================================

@app.get("/api/sync/version", response_model=VersionResponse)
def get_version(
    account_id: str = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """Highest updated_at stored for the account"""
    return {"version": record_service.current_version(db, account_id)}


@app.get("/api/sync/pull", response_model=PullResponse)
def pull(
    since: int = Query(0, ge=0),
    account_id: str = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """Records changed since a version, tombstones included"""
    records = record_service.pull_records(db, account_id, since)
    return {
        "version": record_service.current_version(db, account_id),
        "records": records,
    }


@app.post("/api/sync/push", response_model=PushResponse)
def push(
    request: PushRequest,
    account_id: str = Depends(get_current_account),
    db: Session = Depends(get_db)
):
    """Upsert records under the last-writer-wins rule"""
    if len(request.records) > settings.MAX_PUSH_BATCH:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"At most {settings.MAX_PUSH_BATCH} records per push"
        )
    result = record_service.push_records(db, account_id, request.records)
    return {
        "accepted_count": result.accepted_count,
        "rejected_ids": result.rejected_ids,
        "rejected": [{"kind": kind, "id": record_id} for kind, record_id in result.rejected_keys],
        "ignored_count": result.ignored_count,
        "version": result.version,
        "base_version": result.base_version,
    }


# ============================================================
# MAIN
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
