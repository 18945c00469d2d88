from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from query_sandbox import db
from query_sandbox.config import AppInfo, get_settings
from query_sandbox.core.logging import setup_logging
from query_sandbox.core.runtime_state import set_scheduler_active
import query_sandbox.models  # noqa: F401  registers the tables
from query_sandbox.routers import get_api_router
from query_sandbox.services.cron import reject_stale_requests_once
from query_sandbox.services.scheduler_lock import (
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)
from query_sandbox.utils.errors import error_response

logger = logging.getLogger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _current_settings():
    return get_settings()


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = _current_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _warn_on_missing_llm_credentials(settings: Any) -> None:
    if settings.QUERY_LLM_ENABLED and not settings.OPENAI_API_KEY:
        logger.warning(
            "QUERY_LLM_ENABLED is set but OPENAI_API_KEY is missing; prompts will rely on templates only."
        )


def _start_background_jobs(settings: Any) -> bool:
    """Start the stale-request sweep when this instance wins the scheduler lock."""

    global scheduler
    if not settings.SCHEDULER_ENABLED:
        return False
    if not try_acquire_scheduler_lock():
        logger.warning("Scheduler lock held by another instance; background jobs stay off.")
        return False

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        reject_stale_requests_once,
        "interval",
        minutes=60,
        id="reject-stale-query-requests",
        replace_existing=True,
    )
    scheduler.add_job(
        refresh_scheduler_lock,
        "interval",
        seconds=60,
        id="scheduler-lock-heartbeat",
        replace_existing=True,
    )
    scheduler.start()
    set_scheduler_active(True)
    if settings.app_env.lower() != "dev":
        logger.warning("Background jobs enabled; keep QS_SCHEDULER_ENABLED=1 on a single runner.")
    return True


def _stop_background_jobs(lock_acquired: bool) -> None:
    global scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
    if lock_acquired:
        release_scheduler_lock()
    set_scheduler_active(False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = _current_settings()
    setup_logging(settings.LOG_LEVEL, env=settings.app_env)
    logger.info("Application startup")
    _warn_on_missing_llm_credentials(settings)

    db.init_engine()
    if settings.ALLOW_DB_CREATE_ALL and settings.app_env.lower() in ALLOWED_CREATE_ENV:
        logger.warning("Creating tables with create_all(); migrations are skipped in this environment.")
        db.create_all()

    set_scheduler_active(False)
    lock_acquired = _start_background_jobs(settings)
    try:
        yield
    finally:
        _stop_background_jobs(lock_acquired)
        db.close_engine()
        logger.info("Application shutdown")


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
