"""Executor: the single path from an approved query request to the data store."""
from __future__ import annotations

import copy
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlalchemy.orm import Session

from query_sandbox.config import get_settings
from query_sandbox.models.query_log import QueryLog
from query_sandbox.models.query_request import APPROVED_STATUSES, QueryRequest
from query_sandbox.models.schema_map import SchemaMap
from query_sandbox.services.permissions import active_grants_for_agent
from query_sandbox.services.rate_limits import check_rate_limits
from query_sandbox.services.repositories import RepositoryError, RepositoryRegistry
from query_sandbox.services.sandbox import SandboxMode, validate_query
from query_sandbox.services.translator import canonical_json
from query_sandbox.utils.audit import log_audit
from query_sandbox.utils.errors import error_response
from query_sandbox.utils.time import utcnow

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
TRUNCATION_MARKER = "...[truncated]"


@dataclass
class ExecutionOutcome:
    success: bool
    result: Any = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    already_executed: bool = False
    audit_log_id: str | None = None
    dispatched: bool = False


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def redact_result(result: Any, fields: Sequence[str]) -> Any:
    """Replace the values of ``fields`` in result rows with a placeholder."""

    if not fields:
        return result
    if isinstance(result, list):
        return [redact_result(item, fields) for item in result]
    if isinstance(result, Mapping):
        return {key: (REDACTED if key in fields else value) for key, value in result.items()}
    return result


def _result_size(result: Any) -> int:
    if isinstance(result, list):
        return len(result)
    return 0 if result is None else 1


def load_query_request(db: Session, query_request_id: int) -> QueryRequest:
    request = db.get(QueryRequest, query_request_id)
    if request is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("QUERY_REQUEST_NOT_FOUND", "Query request not found."),
        )
    return request


def stored_outcome(request: QueryRequest, *, already_executed: bool = False) -> ExecutionOutcome:
    """Rebuild the outcome of a request that already reached a terminal state."""

    if request.executed_at is not None:
        return ExecutionOutcome(
            success=True,
            result=request.result,
            warnings=list(request.validation_warnings or []),
            already_executed=already_executed,
            audit_log_id=request.audit_log_id,
        )
    return ExecutionOutcome(
        success=False,
        error=request.execution_error or "Query request is already being executed",
        already_executed=already_executed,
        audit_log_id=request.audit_log_id,
    )


def _claim(db: Session, query_request_id: int) -> bool:
    """Atomically mark the request as taken; only one caller can win."""

    stmt = (
        update(QueryRequest)
        .where(
            QueryRequest.id == query_request_id,
            QueryRequest.claimed_at.is_(None),
            QueryRequest.executed_at.is_(None),
            QueryRequest.execution_error.is_(None),
            QueryRequest.status.in_(APPROVED_STATUSES),
        )
        .values(claimed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def _refuse(db: Session, request: QueryRequest, reason: str, *, actor: str) -> ExecutionOutcome:
    request.execution_error = reason
    log_audit(
        db,
        actor=actor,
        action="QUERY_EXECUTION_REFUSED",
        entity="QueryRequest",
        entity_id=request.id,
        data={"reason": reason, "agent_id": request.agent_id},
    )
    db.commit()
    logger.warning(
        "Query execution refused",
        extra={"query_request_id": request.id, "agent_id": request.agent_id, "reason": reason},
    )
    return ExecutionOutcome(success=False, error=reason)


def _write_query_log(
    db: Session,
    request: QueryRequest,
    params: Mapping[str, Any],
    *,
    duration_ms: float,
    status_label: str,
    result: Any = None,
    error_message: str | None = None,
) -> QueryLog:
    settings = get_settings()
    params_text = canonical_json(params)
    is_slow = duration_ms > settings.SLOW_QUERY_THRESHOLD_MS
    tags = ["agent-query", request.target_entity, request.action]
    if is_slow:
        tags.append("slow")
    entry = QueryLog(
        log_id=uuid.uuid4().hex,
        entity=request.target_entity,
        action=request.action,
        params_digest=hashlib.sha256(params_text.encode("utf-8")).hexdigest(),
        params_text=_truncate(params_text, settings.QUERY_LOG_MAX_PARAMS_BYTES),
        duration_ms=round(duration_ms, 3),
        status=status_label,
        is_slow=is_slow,
        result_size=_result_size(result),
        result_preview=(
            _truncate(canonical_json(result), settings.QUERY_LOG_MAX_RESULT_BYTES)
            if status_label == "success"
            else None
        ),
        error_message=_truncate(error_message, settings.QUERY_LOG_MAX_RESULT_BYTES) if error_message else None,
        tags=tags,
        owner_ids={
            "agent_id": request.agent_id,
            "user_id": request.user_id,
            "query_request_id": request.id,
        },
        timestamp=utcnow(),
    )
    db.add(entry)
    if is_slow:
        logger.warning(
            "Slow agent query",
            extra={"log_id": entry.log_id, "entity": entry.entity, "duration_ms": entry.duration_ms},
        )
    return entry


def execute_query(
    db: Session,
    query_request_id: int,
    *,
    registry: RepositoryRegistry,
    sandbox_mode: SandboxMode | None = None,
    actor: str = "system",
) -> ExecutionOutcome:
    """Run an approved query request exactly once.

    Validation and the quota are re-checked against the current grants after
    the request is claimed. Refusals and store errors are recorded on the
    request, which then stays terminal.
    """

    settings = get_settings()
    request = load_query_request(db, query_request_id)

    if request.status not in APPROVED_STATUSES:
        return ExecutionOutcome(
            success=False, error=f"Query request is {request.status.value} and cannot be executed"
        )
    if request.executed_at is not None or request.execution_error is not None:
        return stored_outcome(request, already_executed=True)

    if not _claim(db, request.id):
        db.refresh(request)
        logger.info("Query request already claimed", extra={"query_request_id": request.id})
        return stored_outcome(request, already_executed=True)
    db.refresh(request)

    mode = sandbox_mode or request.sandbox_mode
    grants = active_grants_for_agent(db, request.agent_id)
    validation = validate_query(
        db, request.agent_id, request.target_entity, request.action, request.params, mode, grants=grants
    )
    if not validation.valid:
        return _refuse(db, request, "Validation failed: " + "; ".join(validation.errors), actor=actor)

    decision = check_rate_limits(
        db, request.agent_id, request.user_id, grants=grants, exclude_request_id=request.id
    )
    if not decision.allowed:
        return _refuse(db, request, decision.reason or "Rate limit exceeded", actor=actor)

    try:
        repository = registry.resolve(request.target_entity, request.action)
    except RepositoryError as exc:
        return _refuse(db, request, str(exc), actor=actor)

    warnings = list(dict.fromkeys([*(request.validation_warnings or []), *validation.warnings]))
    if decision.warning:
        warnings.append(decision.warning)

    params = copy.deepcopy(request.params or {})
    if request.action == "findMany" and params.get("take") is None:
        params["take"] = settings.MAX_RESULT_ROWS
        warnings.append(f"Result size limited to {settings.MAX_RESULT_ROWS} rows")

    start = time.perf_counter()
    try:
        result = repository.run(db, request.action, params)
    except Exception as exc:  # noqa: BLE001
        duration_ms = (time.perf_counter() - start) * 1000
        db.rollback()
        request = load_query_request(db, query_request_id)
        entry = _write_query_log(
            db,
            request,
            params,
            duration_ms=duration_ms,
            status_label="error",
            error_message=f"{type(exc).__name__}: {exc}",
        )
        request.execution_error = f"Query execution failed (log {entry.log_id})"
        request.audit_log_id = entry.log_id
        request.validation_warnings = warnings
        log_audit(
            db,
            actor=actor,
            action="QUERY_EXECUTION_FAILED",
            entity="QueryRequest",
            entity_id=request.id,
            data={"log_id": entry.log_id, "entity": request.target_entity, "action": request.action},
        )
        db.commit()
        logger.exception(
            "Agent query failed in repository",
            extra={"query_request_id": request.id, "log_id": entry.log_id},
        )
        return ExecutionOutcome(
            success=False,
            error=request.execution_error,
            warnings=warnings,
            audit_log_id=entry.log_id,
            dispatched=True,
        )
    duration_ms = (time.perf_counter() - start) * 1000

    schema_map = db.get(SchemaMap, validation.schema_map_id) if validation.schema_map_id else None
    spec = schema_map.entity_spec(request.target_entity) if schema_map else None
    result = redact_result(result, (spec or {}).get("redactedFields") or [])

    entry = _write_query_log(
        db, request, params, duration_ms=duration_ms, status_label="success", result=result
    )
    request.executed_at = utcnow()
    request.result = result
    request.audit_log_id = entry.log_id
    request.schema_map_id = validation.schema_map_id
    request.validation_warnings = warnings
    log_audit(
        db,
        actor=actor,
        action="QUERY_EXECUTED",
        entity="QueryRequest",
        entity_id=request.id,
        data={"log_id": entry.log_id, "duration_ms": entry.duration_ms, "result_size": entry.result_size},
    )
    db.commit()
    logger.info(
        "Agent query executed",
        extra={
            "query_request_id": request.id,
            "entity": request.target_entity,
            "action": request.action,
            "duration_ms": entry.duration_ms,
        },
    )
    return ExecutionOutcome(
        success=True,
        result=result,
        warnings=warnings,
        audit_log_id=entry.log_id,
        dispatched=True,
    )


__all__ = [
    "ExecutionOutcome",
    "REDACTED",
    "execute_query",
    "load_query_request",
    "redact_result",
    "stored_outcome",
]
