"""Permission grant administration endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from query_sandbox.db import get_db
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.models.permission_grant import PermissionGrant
from query_sandbox.schemas.permission_grant import (
    PermissionGrantCreate,
    PermissionGrantRead,
    PermissionGrantUpdate,
)
from query_sandbox.security import require_scope
from query_sandbox.services import permissions as permission_service
from query_sandbox.utils.audit import actor_from_api_key

router = APIRouter(prefix="/permission-grants", tags=["permission-grants"])


@router.post("", response_model=PermissionGrantRead, status_code=status.HTTP_201_CREATED)
def create_grant(
    payload: PermissionGrantCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> PermissionGrant:
    return permission_service.create_grant(db, payload, actor=actor_from_api_key(api_key))


@router.get(
    "",
    response_model=list[PermissionGrantRead],
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def list_grants(
    agent_id: int | None = None,
    active_only: bool = False,
    db: Session = Depends(get_db),
) -> list[PermissionGrant]:
    return permission_service.list_grants(db, agent_id=agent_id, active_only=active_only)


@router.get(
    "/{grant_id}",
    response_model=PermissionGrantRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def get_grant(grant_id: int, db: Session = Depends(get_db)) -> PermissionGrant:
    return permission_service.get_grant(db, grant_id)


@router.patch("/{grant_id}", response_model=PermissionGrantRead)
def update_grant(
    grant_id: int,
    payload: PermissionGrantUpdate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> PermissionGrant:
    return permission_service.update_grant(db, grant_id, payload, actor=actor_from_api_key(api_key))


@router.delete("/{grant_id}", response_model=PermissionGrantRead)
def deactivate_grant(
    grant_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> PermissionGrant:
    """Grants are deactivated, never deleted."""

    return permission_service.deactivate_grant(db, grant_id, actor=actor_from_api_key(api_key))
