"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import text

from fastapi import APIRouter

from query_sandbox.config import get_settings
from query_sandbox.core.runtime_state import is_scheduler_active, last_stale_sweep
from query_sandbox.db import get_engine
from query_sandbox.services.completion import get_llm_stats, llm_enabled
from query_sandbox.services.scheduler_lock import describe_scheduler_lock

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config("alembic.ini")
        script = ScriptDirectory.from_config(config)
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            result = conn.execute(text("SELECT version_num FROM alembic_version"))
            current = result.scalar()
        if expected_head and current == expected_head:
            return True, "up_to_date"
        if expected_head is None:
            return False, "unknown"
        return False, "out_of_date"
    except Exception:  # noqa: BLE001
        logger.exception("Migration check failed")
        return False, "unknown"


def _scheduler_lock_state() -> dict[str, object]:
    try:
        return describe_scheduler_lock()
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler lock lookup failed")
        return {"status": "unknown", "owner": None}


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    """Return a health payload with DB, migration, LLM and scheduler state."""

    settings = get_settings()
    db_status = _db_status()
    db_ok = db_status == "ok"
    if db_ok:
        migration_ok, migration_status = _migrations_status()
    else:
        migration_ok, migration_status = False, "unknown"
    degraded = not (db_ok and migration_ok)
    return {
        "status": "degraded" if degraded else "ok",
        "env": settings.app_env,
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
        "llm_enabled": llm_enabled(),
        "llm_model": settings.QUERY_LLM_MODEL,
        "llm_metrics": get_llm_stats(),
        "sandbox_default_mode": settings.DEFAULT_SANDBOX_MODE,
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "scheduler_lock": _scheduler_lock_state(),
        "stale_sweep": last_stale_sweep(),
    }
