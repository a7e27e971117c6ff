from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # .env.local wins over .env, process environment wins over both.
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), case_sensitive=False, extra="ignore")

    # Core
    ENVIRONMENT: str = Field(default="production")
    LOG_LEVEL: str = Field(default="INFO")
    FIRESTORE_PROJECT_ID: str = Field(default="")
    FIRESTORE_DATABASE: str = Field(default="")  # empty = "(default)" database

    # Field-level encryption (AES-256-CBC). No fallback secret: fail closed.
    ENCRYPTION_KEY: str = Field(default="")

    # Reconciliation
    RESOLVER_SCAN_LIMIT: int = Field(default=20000)
    WRITE_BATCH_SIZE: int = Field(default=400)  # writes per atomic batch; Firestore cap is 500
    REPORT_MAX_DETAILS: int = Field(default=30)
    EXPORT_DIR: str = Field(default="backups")

    # Operator/admin auth (Google OIDC ID token)
    OPERATOR_AUTH_AUDIENCE: str = Field(default="")
    OPERATOR_INVOKER_SUBS: str = Field(default="")  # comma-separated
    OPERATOR_INVOKER_EMAILS: str = Field(default="")  # comma-separated

    # Destructive runs over HTTP are off unless explicitly enabled.
    ALLOW_API_EXECUTE: bool = Field(default=False)


settings = Settings()
