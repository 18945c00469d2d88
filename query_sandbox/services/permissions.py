"""Permission grant management and authorization rules."""
from __future__ import annotations

import logging
from typing import Iterable, Sequence

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from query_sandbox.models.agent import Agent
from query_sandbox.models.permission_grant import PermissionGrant, PermissionLevel
from query_sandbox.models.schema_map import SchemaMap
from query_sandbox.schemas.permission_grant import PermissionGrantCreate, PermissionGrantUpdate
from query_sandbox.utils.audit import log_audit
from query_sandbox.utils.errors import error_response

logger = logging.getLogger(__name__)

# Actions each level refuses regardless of the whitelists.
LEVEL_FORBIDDEN_ACTIONS: dict[PermissionLevel, frozenset[str]] = {
    PermissionLevel.READ_ONLY: frozenset({"create", "update", "updateMany", "delete", "deleteMany"}),
    PermissionLevel.READ_WRITE: frozenset({"delete", "deleteMany"}),
    PermissionLevel.FULL_ACCESS: frozenset(),
}


def level_allows(level: PermissionLevel, action: str) -> bool:
    return action not in LEVEL_FORBIDDEN_ACTIONS.get(PermissionLevel(level), frozenset())


def grant_permits(grant: PermissionGrant, entity: str, action: str) -> bool:
    """Return True when ``grant`` alone authorizes ``action`` on ``entity``."""

    if not grant.is_active or grant.schema_map is None or not grant.schema_map.is_active:
        return False
    spec = grant.schema_map.entity_spec(entity)
    if spec is None:
        return False
    if entity not in (grant.allowed_entities or []):
        return False
    if action not in (grant.allowed_actions or []):
        return False
    if action not in (spec.get("allowedActions") or []):
        return False
    return level_allows(grant.level, action)


def covering_grants(grants: Iterable[PermissionGrant], entity: str) -> list[PermissionGrant]:
    """Grants whose whitelist and schema map mention ``entity``."""

    return [
        grant
        for grant in grants
        if entity in (grant.allowed_entities or [])
        and grant.schema_map is not None
        and grant.schema_map.entity_spec(entity) is not None
    ]


def effective_quota(grants: Sequence[PermissionGrant]) -> int | None:
    if not grants:
        return None
    return min(grant.max_queries_per_day for grant in grants)


def active_grants_for_agent(db: Session, agent_id: int) -> list[PermissionGrant]:
    """Active grants of the agent whose schema map is active too, oldest first."""

    stmt = (
        select(PermissionGrant)
        .join(SchemaMap, SchemaMap.id == PermissionGrant.schema_map_id)
        .where(
            PermissionGrant.agent_id == agent_id,
            PermissionGrant.is_active.is_(True),
            SchemaMap.is_active.is_(True),
        )
        .order_by(PermissionGrant.id)
    )
    return list(db.scalars(stmt))


def get_grant(db: Session, grant_id: int) -> PermissionGrant:
    grant = db.get(PermissionGrant, grant_id)
    if grant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("PERMISSION_GRANT_NOT_FOUND", "Permission grant not found."),
        )
    return grant


def list_grants(db: Session, *, agent_id: int | None = None, active_only: bool = False) -> list[PermissionGrant]:
    stmt = select(PermissionGrant).order_by(PermissionGrant.id)
    if agent_id is not None:
        stmt = stmt.where(PermissionGrant.agent_id == agent_id)
    if active_only:
        stmt = stmt.where(PermissionGrant.is_active.is_(True))
    return list(db.scalars(stmt))


def create_grant(db: Session, payload: PermissionGrantCreate, *, actor: str) -> PermissionGrant:
    if db.get(Agent, payload.agent_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("AGENT_NOT_FOUND", "Agent not found."),
        )
    schema_map = db.get(SchemaMap, payload.schema_map_id)
    if schema_map is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("SCHEMA_MAP_NOT_FOUND", "Schema map not found."),
        )

    unknown = [entity for entity in payload.allowed_entities if schema_map.entity_spec(entity) is None]
    if unknown:
        logger.warning(
            "Grant lists entities missing from its schema map",
            extra={"schema_map_id": schema_map.id, "entities": unknown},
        )

    grant = PermissionGrant(**payload.model_dump())
    db.add(grant)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action="PERMISSION_GRANT_CREATED",
        entity="PermissionGrant",
        entity_id=grant.id,
        data={
            "agent_id": grant.agent_id,
            "schema_map_id": grant.schema_map_id,
            "level": grant.level.value,
        },
    )
    db.commit()
    db.refresh(grant)
    return grant


def update_grant(
    db: Session, grant_id: int, payload: PermissionGrantUpdate, *, actor: str
) -> PermissionGrant:
    grant = get_grant(db, grant_id)
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(grant, field, value)
    log_audit(
        db,
        actor=actor,
        action="PERMISSION_GRANT_UPDATED",
        entity="PermissionGrant",
        entity_id=grant.id,
        data={key: (value.value if isinstance(value, PermissionLevel) else value) for key, value in changes.items()},
    )
    db.commit()
    db.refresh(grant)
    return grant


def deactivate_grant(db: Session, grant_id: int, *, actor: str) -> PermissionGrant:
    grant = get_grant(db, grant_id)
    if grant.is_active:
        grant.is_active = False
        log_audit(
            db,
            actor=actor,
            action="PERMISSION_GRANT_DEACTIVATED",
            entity="PermissionGrant",
            entity_id=grant.id,
        )
        db.commit()
        db.refresh(grant)
    return grant


__all__ = [
    "LEVEL_FORBIDDEN_ACTIONS",
    "active_grants_for_agent",
    "covering_grants",
    "create_grant",
    "deactivate_grant",
    "effective_quota",
    "get_grant",
    "grant_permits",
    "level_allows",
    "list_grants",
    "update_grant",
]
