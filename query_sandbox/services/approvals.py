"""Approval state machine for agent query requests."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from query_sandbox.config import get_settings
from query_sandbox.models.query_request import QueryRequest, QueryRequestStatus
from query_sandbox.models.query_template import QueryTemplate
from query_sandbox.schemas.query_request import QueryOptions
from query_sandbox.services.executor import ExecutionOutcome, execute_query, load_query_request
from query_sandbox.services.repositories import RepositoryRegistry
from query_sandbox.services.sandbox import ValidationResult
from query_sandbox.utils.audit import log_audit
from query_sandbox.utils.errors import error_response
from query_sandbox.utils.time import utcnow

logger = logging.getLogger(__name__)

BULK_ACTIONS = frozenset({"updateMany", "deleteMany"})
MAX_SIMPLE_WHERE_KEYS = 5
STALE_REJECTION_REASON = "Approval window expired"


def is_complex_query(action: str, params: Mapping[str, Any] | None) -> bool:
    """Queries a human should look at even when the grant allows auto-approval."""

    if action in BULK_ACTIONS:
        return True
    where = (params or {}).get("where")
    if not isinstance(where, Mapping):
        return False
    branches = where.get("OR")
    if isinstance(branches, list) and len(branches) > 1:
        return True
    if "NOT" in where:
        return True
    return len(where) > MAX_SIMPLE_WHERE_KEYS


def initial_status(
    validation: ValidationResult,
    options: QueryOptions,
    *,
    action: str,
    params: Mapping[str, Any],
    template: QueryTemplate | None = None,
) -> QueryRequestStatus:
    if not options.auto_approve or validation.requires_approval:
        return QueryRequestStatus.PENDING
    if is_complex_query(action, params):
        return QueryRequestStatus.PENDING
    if template is not None and not template.is_auto_approved:
        return QueryRequestStatus.PENDING
    return QueryRequestStatus.AUTO_APPROVED


def decide_approval(
    db: Session,
    query_request_id: int,
    *,
    approved: bool,
    rejection_reason: str | None = None,
    actor: str,
    registry: RepositoryRegistry | None = None,
) -> tuple[QueryRequest, ExecutionOutcome | None]:
    """Record a reviewer decision on a pending request.

    With ``EXECUTE_ON_APPROVAL`` and a registry, an approved request is
    executed immediately and the outcome returned alongside it.
    """

    request = load_query_request(db, query_request_id)
    if request.status != QueryRequestStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response(
                "QUERY_NOT_PENDING",
                f"Query request is {request.status.value}; only pending requests can be decided.",
            ),
        )

    now = utcnow()
    request.approved_by = actor
    request.approved_at = now
    if approved:
        request.status = QueryRequestStatus.APPROVED
        action = "QUERY_APPROVED"
    else:
        request.status = QueryRequestStatus.REJECTED
        request.rejection_reason = rejection_reason or "Rejected by reviewer"
        action = "QUERY_REJECTED"
    log_audit(
        db,
        actor=actor,
        action=action,
        entity="QueryRequest",
        entity_id=request.id,
        data={"agent_id": request.agent_id, "reason": request.rejection_reason},
    )
    db.commit()
    db.refresh(request)
    logger.info(
        "Query request decided",
        extra={"query_request_id": request.id, "approved": approved, "actor": actor},
    )

    outcome = None
    if approved and registry is not None and get_settings().EXECUTE_ON_APPROVAL:
        outcome = execute_query(db, request.id, registry=registry, actor=actor)
        db.refresh(request)
    return request, outcome


def reject_stale_pending_requests(db: Session, *, now: datetime | None = None) -> int:
    """Reject pending requests older than the approval window; returns the count."""

    settings = get_settings()
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.PENDING_APPROVAL_TTL_HOURS)
    stale = list(
        db.scalars(
            select(QueryRequest).where(
                QueryRequest.status == QueryRequestStatus.PENDING,
                QueryRequest.created_at < cutoff,
            )
        )
    )
    for request in stale:
        request.status = QueryRequestStatus.REJECTED
        request.rejection_reason = STALE_REJECTION_REASON
        log_audit(
            db,
            actor="system",
            action="QUERY_REJECTED",
            entity="QueryRequest",
            entity_id=request.id,
            data={"reason": STALE_REJECTION_REASON},
        )
    db.commit()
    if stale:
        logger.info("Stale pending query requests rejected", extra={"count": len(stale)})
    return len(stale)


__all__ = [
    "STALE_REJECTION_REASON",
    "decide_approval",
    "initial_status",
    "is_complex_query",
    "reject_stale_pending_requests",
]
