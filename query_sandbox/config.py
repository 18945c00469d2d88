"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("QS_ENV", "dev").lower()

# Legacy key, only tolerated in DEV
DEV_API_KEY = os.getenv("DEV_API_KEY") or os.getenv("API_KEY") or "dev-secret-key"
DEV_API_KEY_ALLOWED = ENV in {"dev", "local", "dev_local"}

# Recognised scopes
API_SCOPES = {"agent", "reviewer", "admin"}

# Background jobs (optional)
SCHEDULER_ENABLED = os.getenv("QS_SCHEDULER_ENABLED", "0") in {
    "1",
    "true",
    "yes",
    "True",
    "YES",
}


class Settings(BaseSettings):
    """Environment configuration for the agent query sandbox."""

    app_env: str = ENV
    database_url: str = "sqlite:///query_sandbox.db"
    SECRET_KEY: str = "change-me"
    DEV_API_KEY: str | None = Field(
        default=DEV_API_KEY,
        validation_alias=AliasChoices("DEV_API_KEY", "API_KEY"),
    )
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ALLOW_DB_CREATE_ALL: bool = False
    SCHEDULER_ENABLED: bool = SCHEDULER_ENABLED

    # --- Prompt translation (LLM) ----------------------------------------
    QUERY_LLM_ENABLED: bool = False
    QUERY_LLM_PROVIDER: str = "openai"
    QUERY_LLM_MODEL: str = "gpt-4.1-mini"
    QUERY_LLM_TIMEOUT_SECONDS: int = 15
    QUERY_LLM_MAX_TOKENS: int = 1000
    QUERY_LLM_TEMPERATURE: float = 0.2
    OPENAI_API_KEY: str | None = None

    # --- Sandbox ----------------------------------------------------------
    DEFAULT_SANDBOX_MODE: Literal["strict", "permissive"] = "strict"
    RECOMMENDED_MAX_TAKE: int = 1000
    MAX_RESULT_ROWS: int = 1000

    # --- Rate limiting ----------------------------------------------------
    RATE_LIMIT_WINDOW_HOURS: int = 24
    RATE_LIMIT_WARNING_RATIO: float = 0.8
    RATE_LIMIT_PER_USER: bool = False
    RATE_LIMIT_BURST_LIMIT: int = 20
    RATE_LIMIT_BURST_WINDOW_MINUTES: int = 5

    # --- Query audit log --------------------------------------------------
    QUERY_LOG_MAX_PARAMS_BYTES: int = 10_000
    QUERY_LOG_MAX_RESULT_BYTES: int = 5_000
    SLOW_QUERY_THRESHOLD_MS: int = 500

    # --- Approvals --------------------------------------------------------
    EXECUTE_ON_APPROVAL: bool = True
    PENDING_APPROVAL_TTL_HOURS: int = 72

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("OPENAI_API_KEY")
    @classmethod
    def _strip_empty_key(cls, value: str | None) -> str | None:
        """Normalise empty API keys to ``None`` for easier checks."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("RATE_LIMIT_WARNING_RATIO")
    @classmethod
    def _ratio_in_range(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("RATE_LIMIT_WARNING_RATIO must be in (0, 1]")
        return value


class AppInfo(BaseModel):
    name: str = "agent-query-sandbox"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "DEV_API_KEY",
    "DEV_API_KEY_ALLOWED",
    "API_SCOPES",
    "SCHEDULER_ENABLED",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
