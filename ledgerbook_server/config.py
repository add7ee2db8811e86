# -*- coding: utf-8 -*-
"""
Sync Server Configuration

Every field can be overridden from the environment or a ``.env`` file,
e.g. ``DATABASE_URL=postgresql://...`` for a shared deployment.
"""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database (one file per deployment; records are scoped by account)
    DATABASE_URL: str = "sqlite:///./ledgerbook_sync.db"

    # JWT, subject = account id
    SECRET_KEY: str = "ledgerbook-sync-secret-key-change-this"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 30  # 30 days

    # Sync
    MAX_PUSH_BATCH: int = 1000

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"


settings = Settings()
