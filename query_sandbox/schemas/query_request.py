"""Schemas for agent query submission, approval and execution."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from query_sandbox.models.query_request import QueryRequestStatus

SandboxMode = Literal["strict", "permissive"]


class QueryOptions(BaseModel):
    auto_approve: bool = True
    use_templates: bool = True
    sandbox_mode: SandboxMode | None = None
    max_tokens: int | None = Field(default=None, gt=0, le=8000)
    temperature: float | None = Field(default=None, ge=0, le=2)


class AgentQueryCreate(BaseModel):
    agent_id: int = Field(gt=0)
    user_id: int = Field(gt=0)
    session_id: str | None = Field(default=None, max_length=128)
    prompt: str = Field(min_length=1, max_length=4000)
    options: QueryOptions = Field(default_factory=QueryOptions)


class ApprovalDecision(BaseModel):
    approved: bool
    rejection_reason: str | None = Field(default=None, max_length=2000)


class ExecuteOptions(BaseModel):
    sandbox_mode: SandboxMode | None = None


class QueryValidationRequest(BaseModel):
    agent_id: int = Field(gt=0)
    target_entity: str = Field(min_length=1)
    action: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    sandbox_mode: SandboxMode | None = None


class ValidationRead(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]
    requires_approval: bool
    grant_id: int | None = None
    schema_map_id: int | None = None


class ExecutionRead(BaseModel):
    success: bool
    result: Any = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    already_executed: bool = False
    audit_log_id: str | None = None


class SubmitResultRead(BaseModel):
    success: bool
    query_request_id: int
    status: QueryRequestStatus
    requires_approval: bool
    generated_query_text: str
    warnings: list[str] = Field(default_factory=list)
    execution: ExecutionRead | None = None


class QueryRequestRead(BaseModel):
    id: int
    agent_id: int
    user_id: int
    session_id: str | None = None
    prompt: str
    generated_query_text: str
    target_entity: str
    action: str
    params: dict[str, Any]
    status: QueryRequestStatus
    sandbox_mode: str
    template_id: int | None = None
    schema_map_id: int | None = None
    validation_warnings: list[str]
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    executed_at: datetime | None = None
    result: Any = None
    execution_error: str | None = None
    audit_log_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class QueryRequestPage(BaseModel):
    items: list[QueryRequestRead]
    pagination: Pagination
