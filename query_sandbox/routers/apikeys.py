"""API key administration endpoints."""
from __future__ import annotations

from datetime import datetime, UTC, timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from query_sandbox.db import get_db
from query_sandbox.models.agent import Agent
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.security import require_scope
from query_sandbox.utils.apikey import gen_key
from query_sandbox.utils.audit import actor_from_api_key, log_audit
from query_sandbox.utils.errors import error_response

router = APIRouter(prefix="/apikeys", tags=["apikeys"])


# ------ Schemas ------

class CreateKeyIn(BaseModel):
    """Payload to create a key (the raw key is generated server side)."""
    name: str
    scope: ApiScope
    agent_id: int | None = None
    days_valid: int | None = 90

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("name cannot be blank")
        return value.strip()

    @model_validator(mode="after")
    def agent_keys_are_bound(self) -> "CreateKeyIn":
        if self.scope == ApiScope.agent and self.agent_id is None:
            raise ValueError("agent keys require agent_id")
        return self


class ApiKeyCreateOut(BaseModel):
    """POST /apikeys response: the raw key is returned exactly once."""
    id: int
    name: str
    prefix: str
    scope: ApiScope
    agent_id: int | None
    key: str
    expires_at: datetime | None


class ApiKeyRead(BaseModel):
    """GET response (never the key itself)."""
    id: int
    name: str
    prefix: str
    scope: ApiScope
    agent_id: int | None
    is_active: bool
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


# ------ Routes ------

@router.post("", response_model=ApiKeyCreateOut, status_code=status.HTTP_201_CREATED)
def create_api_key(
    payload: CreateKeyIn,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> ApiKeyCreateOut:
    if payload.agent_id is not None and db.get(Agent, payload.agent_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("AGENT_NOT_FOUND", "Agent not found."),
        )

    raw, prefix, key_hash = gen_key()
    now = datetime.now(UTC)
    expires_at = now + timedelta(days=payload.days_valid) if payload.days_valid else None

    row = ApiKey(
        name=payload.name,
        prefix=prefix,
        key_hash=key_hash,
        scope=payload.scope,
        agent_id=payload.agent_id,
        expires_at=expires_at,
        is_active=True,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("APIKEY_EXISTS", "Key name already exists."),
        ) from exc

    log_audit(
        db,
        actor=actor_from_api_key(api_key, fallback="admin"),
        action="CREATE_API_KEY",
        entity="ApiKey",
        entity_id=row.id,
        data={"name": row.name, "scope": row.scope.value, "agent_id": row.agent_id},
    )
    db.commit()
    db.refresh(row)

    return ApiKeyCreateOut(
        id=row.id,
        name=row.name,
        prefix=row.prefix,
        scope=row.scope,
        agent_id=row.agent_id,
        key=raw,
        expires_at=row.expires_at,
    )


@router.get(
    "",
    response_model=list[ApiKeyRead],
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def list_apikeys(db: Session = Depends(get_db)) -> list[ApiKey]:
    return list(db.scalars(select(ApiKey).order_by(ApiKey.id)))


@router.get(
    "/{api_key_id}",
    response_model=ApiKeyRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def get_apikey(api_key_id: int, db: Session = Depends(get_db)) -> ApiKey:
    row = db.get(ApiKey, api_key_id)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("APIKEY_NOT_FOUND", "API key not found."),
        )
    return row


@router.delete("/{api_key_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def revoke_apikey(
    api_key_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> Response:
    row = db.get(ApiKey, api_key_id)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("APIKEY_NOT_FOUND", "API key not found."),
        )

    actor = actor_from_api_key(api_key, fallback="admin")
    if not row.is_active:
        log_audit(db, actor=actor, action="REVOKE_API_KEY_NOOP", entity="ApiKey", entity_id=api_key_id)
        db.commit()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    row.is_active = False
    log_audit(
        db,
        actor=actor,
        action="REVOKE_API_KEY",
        entity="ApiKey",
        entity_id=api_key_id,
        data={"name": row.name},
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
