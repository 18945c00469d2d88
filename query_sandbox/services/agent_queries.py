"""Prompt submission orchestration and query request lookups."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from query_sandbox.config import get_settings
from query_sandbox.models.agent import Agent
from query_sandbox.models.query_request import QueryRequest, QueryRequestStatus
from query_sandbox.models.query_template import QueryTemplate
from query_sandbox.models.schema_map import SchemaMap
from query_sandbox.models.user import User
from query_sandbox.schemas.query_request import QueryOptions
from query_sandbox.services.approvals import initial_status
from query_sandbox.services.completion import CompletionProvider
from query_sandbox.services.executor import ExecutionOutcome, execute_query, load_query_request
from query_sandbox.services.permissions import active_grants_for_agent
from query_sandbox.services.rate_limits import check_rate_limits
from query_sandbox.services.repositories import RepositoryRegistry
from query_sandbox.services.sandbox import validate_query
from query_sandbox.services.templates import list_templates
from query_sandbox.services.translator import translate
from query_sandbox.utils.audit import log_audit
from query_sandbox.utils.errors import QueryValidationError, RateLimitError, TranslationError, error_response

logger = logging.getLogger(__name__)

PROMPT_AUDIT_PREVIEW = 500


@dataclass
class SubmitResult:
    success: bool
    query_request_id: int
    status: QueryRequestStatus
    requires_approval: bool
    generated_query_text: str
    warnings: list[str] = field(default_factory=list)
    execution: ExecutionOutcome | None = None


def _audit_submission_failure(
    db: Session,
    *,
    actor: str,
    action: str,
    agent_id: int,
    user_id: int,
    prompt: str,
    data: dict,
) -> None:
    log_audit(
        db,
        actor=actor,
        action=action,
        entity="Agent",
        entity_id=agent_id,
        data={"user_id": user_id, "prompt": prompt[:PROMPT_AUDIT_PREVIEW], **data},
    )
    db.commit()


def _ensure_principals(db: Session, agent_id: int, user_id: int) -> Agent:
    agent = db.get(Agent, agent_id)
    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("AGENT_NOT_FOUND", "Agent not found."),
        )
    if not agent.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("AGENT_INACTIVE", "Agent is inactive."),
        )
    if db.get(User, user_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("USER_NOT_FOUND", "User not found."),
        )
    return agent


def submit_prompt(
    db: Session,
    *,
    agent_id: int,
    user_id: int,
    session_id: str | None,
    prompt: str,
    options: QueryOptions,
    provider: CompletionProvider | None,
    registry: RepositoryRegistry,
    actor: str = "system",
) -> SubmitResult:
    """Translate, validate and persist a prompt; auto-approved requests run at once."""

    settings = get_settings()
    _ensure_principals(db, agent_id, user_id)
    failure = dict(actor=actor, agent_id=agent_id, user_id=user_id, prompt=prompt)

    grants = active_grants_for_agent(db, agent_id)
    if not grants:
        _audit_submission_failure(
            db, action="QUERY_VALIDATION_FAILED", data={"errors": ["Agent has no permissions"]}, **failure
        )
        raise QueryValidationError(["Agent has no permissions"])

    decision = check_rate_limits(db, agent_id, user_id, grants=grants)
    if not decision.allowed:
        _audit_submission_failure(
            db,
            action="QUERY_RATE_LIMITED",
            data={"used": decision.used, "limit": decision.limit},
            **failure,
        )
        raise RateLimitError(decision.reason or "Rate limit exceeded", used=decision.used, limit=decision.limit)

    schema_maps: dict[int, SchemaMap] = {}
    for grant in grants:
        schema_maps.setdefault(grant.schema_map_id, grant.schema_map)
    templates = list_templates(db, active_only=True) if options.use_templates else []

    try:
        translated = translate(
            prompt,
            list(schema_maps.values()),
            options,
            grants=grants,
            templates=templates,
            provider=provider,
        )
    except TranslationError as exc:
        _audit_submission_failure(
            db, action="PROMPT_TRANSLATION_FAILED", data={"reason": exc.message}, **failure
        )
        logger.warning(
            "Prompt translation failed", extra={"agent_id": agent_id, "reason": exc.message}
        )
        raise

    mode = options.sandbox_mode or settings.DEFAULT_SANDBOX_MODE
    validation = validate_query(
        db,
        agent_id,
        translated.target_entity,
        translated.action,
        translated.params,
        mode,
        grants=grants,
    )
    if not validation.valid:
        _audit_submission_failure(
            db,
            action="QUERY_VALIDATION_FAILED",
            data={
                "entity": translated.target_entity,
                "action": translated.action,
                "errors": validation.errors,
            },
            **failure,
        )
        raise QueryValidationError(validation.errors, validation.warnings)

    template = db.get(QueryTemplate, translated.template_id) if translated.template_id else None
    request_status = initial_status(
        validation,
        options,
        action=translated.action,
        params=translated.params,
        template=template,
    )
    warnings = list(validation.warnings)
    if decision.warning:
        warnings.append(decision.warning)

    request = QueryRequest(
        agent_id=agent_id,
        user_id=user_id,
        session_id=session_id,
        prompt=prompt,
        generated_query_text=translated.generated_query_text,
        target_entity=translated.target_entity,
        action=translated.action,
        params=translated.params,
        status=request_status,
        sandbox_mode=mode,
        template_id=translated.template_id,
        schema_map_id=validation.schema_map_id,
        validation_warnings=warnings,
    )
    db.add(request)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action="QUERY_REQUEST_CREATED",
        entity="QueryRequest",
        entity_id=request.id,
        data={
            "agent_id": agent_id,
            "status": request_status.value,
            "strategy": translated.strategy,
            "entity": translated.target_entity,
            "action": translated.action,
        },
    )
    db.commit()
    logger.info(
        "Query request created",
        extra={
            "query_request_id": request.id,
            "agent_id": agent_id,
            "status": request_status.value,
            "strategy": translated.strategy,
        },
    )

    execution = None
    if request_status == QueryRequestStatus.AUTO_APPROVED:
        execution = execute_query(db, request.id, registry=registry, actor=actor)
        warnings = list(dict.fromkeys([*warnings, *execution.warnings]))

    return SubmitResult(
        success=execution.success if execution is not None else True,
        query_request_id=request.id,
        status=request_status,
        requires_approval=request_status == QueryRequestStatus.PENDING,
        generated_query_text=translated.generated_query_text,
        warnings=warnings,
        execution=execution,
    )


def get_query_request(db: Session, query_request_id: int) -> QueryRequest:
    return load_query_request(db, query_request_id)


def list_query_requests(
    db: Session,
    *,
    agent_id: int | None = None,
    user_id: int | None = None,
    status_filter: QueryRequestStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[QueryRequest], dict[str, int]]:
    """Return one page of requests (newest first) and pagination metadata."""

    filters = []
    if agent_id is not None:
        filters.append(QueryRequest.agent_id == agent_id)
    if user_id is not None:
        filters.append(QueryRequest.user_id == user_id)
    if status_filter is not None:
        filters.append(QueryRequest.status == status_filter)

    total = int(db.scalar(select(func.count(QueryRequest.id)).where(*filters)) or 0)
    stmt = (
        select(QueryRequest)
        .where(*filters)
        .order_by(QueryRequest.created_at.desc(), QueryRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list(db.scalars(stmt))
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }
    return items, pagination


__all__ = ["SubmitResult", "get_query_request", "list_query_requests", "submit_prompt"]
