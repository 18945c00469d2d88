"""Agent query submission, approval and execution endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from query_sandbox.config import get_settings
from query_sandbox.db import get_db
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.models.query_request import APPROVED_STATUSES, QueryRequest, QueryRequestStatus
from query_sandbox.schemas.query_request import (
    AgentQueryCreate,
    ApprovalDecision,
    ExecuteOptions,
    ExecutionRead,
    QueryRequestPage,
    QueryRequestRead,
    QueryValidationRequest,
    SubmitResultRead,
    ValidationRead,
)
from query_sandbox.security import ensure_agent_access, require_scope
from query_sandbox.services.agent_queries import get_query_request, list_query_requests, submit_prompt
from query_sandbox.services.approvals import decide_approval
from query_sandbox.services.completion import CompletionProvider, get_completion_provider
from query_sandbox.services.executor import ExecutionOutcome, execute_query
from query_sandbox.services.repositories import RepositoryRegistry, get_repository_registry
from query_sandbox.services.sandbox import validate_query
from query_sandbox.utils.audit import actor_from_api_key
from query_sandbox.utils.errors import ExecutionError, error_response

router = APIRouter(tags=["agent-queries"])


def _execution_read(outcome: ExecutionOutcome | None) -> ExecutionRead | None:
    if outcome is None:
        return None
    return ExecutionRead(
        success=outcome.success,
        result=outcome.result,
        error=outcome.error,
        warnings=outcome.warnings,
        already_executed=outcome.already_executed,
        audit_log_id=outcome.audit_log_id,
    )


def _raise_for_store_failure(outcome: ExecutionOutcome) -> None:
    # Store failures carry a query log id; refusals never reach the store.
    if not outcome.success and outcome.audit_log_id:
        raise ExecutionError(outcome.error or "Query execution failed", audit_log_id=outcome.audit_log_id)


@router.post("/agent-queries", response_model=SubmitResultRead, status_code=status.HTTP_201_CREATED)
def submit_agent_query(
    payload: AgentQueryCreate,
    db: Session = Depends(get_db),
    provider: CompletionProvider = Depends(get_completion_provider),
    registry: RepositoryRegistry = Depends(get_repository_registry),
    api_key: ApiKey = Depends(require_scope({ApiScope.agent})),
) -> SubmitResultRead:
    """Turn a natural-language prompt into a validated query request."""

    ensure_agent_access(api_key, payload.agent_id)
    result = submit_prompt(
        db,
        agent_id=payload.agent_id,
        user_id=payload.user_id,
        session_id=payload.session_id,
        prompt=payload.prompt,
        options=payload.options,
        provider=provider,
        registry=registry,
        actor=actor_from_api_key(api_key),
    )
    return SubmitResultRead(
        success=result.success,
        query_request_id=result.query_request_id,
        status=result.status,
        requires_approval=result.requires_approval,
        generated_query_text=result.generated_query_text,
        warnings=result.warnings,
        execution=_execution_read(result.execution),
    )


@router.post("/query-requests/validate", response_model=ValidationRead)
def validate_structured_query(
    payload: QueryValidationRequest,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.agent})),
) -> ValidationRead:
    """Dry-run the sandbox on a structured query without persisting anything."""

    ensure_agent_access(api_key, payload.agent_id)
    validation = validate_query(
        db,
        payload.agent_id,
        payload.target_entity,
        payload.action,
        payload.params,
        payload.sandbox_mode,
    )
    return ValidationRead(
        valid=validation.valid,
        errors=validation.errors,
        warnings=validation.warnings,
        requires_approval=validation.requires_approval,
        grant_id=validation.grant_id,
        schema_map_id=validation.schema_map_id,
    )


@router.get("/query-requests", response_model=QueryRequestPage)
def list_requests(
    agent_id: int | None = None,
    user_id: int | None = None,
    status_filter: QueryRequestStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.agent, ApiScope.reviewer})),
) -> QueryRequestPage:
    # Agent keys only list their own agent's requests.
    if api_key.scope == ApiScope.agent:
        ensure_agent_access(api_key, agent_id if agent_id is not None else api_key.agent_id)
        agent_id = api_key.agent_id
    items, pagination = list_query_requests(
        db,
        agent_id=agent_id,
        user_id=user_id,
        status_filter=status_filter,
        page=page,
        limit=limit,
    )
    return QueryRequestPage(
        items=[QueryRequestRead.model_validate(item) for item in items],
        pagination=pagination,
    )


@router.get("/query-requests/{query_request_id}", response_model=QueryRequestRead)
def read_request(
    query_request_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.agent, ApiScope.reviewer})),
) -> QueryRequest:
    request = get_query_request(db, query_request_id)
    ensure_agent_access(api_key, request.agent_id)
    return request


@router.post("/query-requests/{query_request_id}/decision", response_model=QueryRequestRead)
def decide_request(
    query_request_id: int,
    payload: ApprovalDecision,
    db: Session = Depends(get_db),
    registry: RepositoryRegistry = Depends(get_repository_registry),
    api_key: ApiKey = Depends(require_scope({ApiScope.reviewer})),
) -> QueryRequest:
    """Approve or reject a pending request (approval may execute it right away)."""

    request, _outcome = decide_approval(
        db,
        query_request_id,
        approved=payload.approved,
        rejection_reason=payload.rejection_reason,
        actor=actor_from_api_key(api_key),
        registry=registry if get_settings().EXECUTE_ON_APPROVAL else None,
    )
    return request


@router.post("/query-requests/{query_request_id}/execute", response_model=ExecutionRead)
def execute_request(
    query_request_id: int,
    payload: ExecuteOptions | None = None,
    db: Session = Depends(get_db),
    registry: RepositoryRegistry = Depends(get_repository_registry),
    api_key: ApiKey = Depends(require_scope({ApiScope.agent, ApiScope.reviewer})),
) -> ExecutionRead:
    """Execute an approved request; repeated calls return the stored outcome."""

    request = get_query_request(db, query_request_id)
    ensure_agent_access(api_key, request.agent_id)
    if request.status not in APPROVED_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response(
                "QUERY_NOT_APPROVED",
                f"Query request is {request.status.value} and cannot be executed.",
            ),
        )
    outcome = execute_query(
        db,
        query_request_id,
        registry=registry,
        sandbox_mode=payload.sandbox_mode if payload else None,
        actor=actor_from_api_key(api_key),
    )
    _raise_for_store_failure(outcome)
    return _execution_read(outcome)
