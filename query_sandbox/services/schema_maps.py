"""Schema map management, generation and prompt rendering."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from fastapi import HTTPException, status
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from query_sandbox.models.permission_grant import PermissionGrant
from query_sandbox.models.query_request import QueryRequest
from query_sandbox.models.schema_map import SchemaMap
from query_sandbox.schemas.schema_map import KNOWN_ACTIONS, EntitySpec, SchemaMapCreate, SchemaMapUpdate
from query_sandbox.services.repositories import READ_ACTIONS, RepositoryRegistry
from query_sandbox.utils.audit import log_audit
from query_sandbox.utils.errors import error_response

logger = logging.getLogger(__name__)

INITIAL_VERSION = "1.0.0"


def _dump_specs(specs: dict[str, EntitySpec]) -> dict[str, dict[str, Any]]:
    return {entity: spec.model_dump() for entity, spec in specs.items()}


def _next_minor(version: str) -> str:
    parts = (version or INITIAL_VERSION).split(".")
    try:
        major, minor = int(parts[0]), int(parts[1])
    except (IndexError, ValueError):
        return INITIAL_VERSION
    return f"{major}.{minor + 1}.0"


def get_schema_map(db: Session, schema_map_id: int) -> SchemaMap:
    schema_map = db.get(SchemaMap, schema_map_id)
    if schema_map is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("SCHEMA_MAP_NOT_FOUND", "Schema map not found."),
        )
    return schema_map


def list_schema_maps(
    db: Session, *, is_active: bool | None = None, org_id: str | None = None
) -> list[SchemaMap]:
    stmt = select(SchemaMap).order_by(SchemaMap.id)
    if is_active is not None:
        stmt = stmt.where(SchemaMap.is_active.is_(is_active))
    if org_id is not None:
        stmt = stmt.where(SchemaMap.org_id == org_id)
    return list(db.scalars(stmt))


def create_schema_map(db: Session, payload: SchemaMapCreate, *, actor: str) -> SchemaMap:
    """Persist a new schema map at the initial version."""

    schema_map = SchemaMap(
        name=payload.name,
        description=payload.description,
        version=INITIAL_VERSION,
        entity_specs=_dump_specs(payload.entity_specs),
        is_active=payload.is_active,
        owner_id=payload.owner_id,
        org_id=payload.org_id,
    )
    db.add(schema_map)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action="SCHEMA_MAP_CREATED",
        entity="SchemaMap",
        entity_id=schema_map.id,
        data={"name": schema_map.name, "entities": sorted(schema_map.entity_specs)},
    )
    db.commit()
    db.refresh(schema_map)
    logger.info("Schema map created", extra={"schema_map_id": schema_map.id, "schema_map_name": schema_map.name})
    return schema_map


def is_referenced_by_execution(db: Session, schema_map_id: int) -> bool:
    stmt = (
        select(QueryRequest.id)
        .where(
            QueryRequest.schema_map_id == schema_map_id,
            or_(QueryRequest.claimed_at.is_not(None), QueryRequest.executed_at.is_not(None)),
        )
        .limit(1)
    )
    return db.scalar(stmt) is not None


def update_schema_map(
    db: Session, schema_map_id: int, payload: SchemaMapUpdate, *, actor: str
) -> SchemaMap:
    """Update a schema map, versioning it once claimed requests reference it.

    Returns the record now carrying the new definition: the same row when it
    could be mutated in place, otherwise the freshly created version.
    """

    schema_map = get_schema_map(db, schema_map_id)
    changes = payload.model_dump(exclude_unset=True)
    if "entity_specs" in changes and payload.entity_specs is not None:
        changes["entity_specs"] = _dump_specs(payload.entity_specs)

    if not changes:
        return schema_map

    definition_changed = "entity_specs" in changes or "name" in changes
    if not definition_changed or not is_referenced_by_execution(db, schema_map.id):
        for field, value in changes.items():
            setattr(schema_map, field, value)
        log_audit(
            db,
            actor=actor,
            action="SCHEMA_MAP_UPDATED",
            entity="SchemaMap",
            entity_id=schema_map.id,
            data={"fields": sorted(changes)},
        )
        db.commit()
        db.refresh(schema_map)
        return schema_map

    successor = SchemaMap(
        name=changes.get("name", schema_map.name),
        description=changes.get("description", schema_map.description),
        version=_next_minor(schema_map.version),
        entity_specs=changes.get("entity_specs", schema_map.entity_specs),
        is_active=changes.get("is_active", schema_map.is_active),
        owner_id=schema_map.owner_id,
        org_id=schema_map.org_id,
    )
    db.add(successor)
    db.flush()
    schema_map.is_active = False
    db.execute(
        update(PermissionGrant)
        .where(PermissionGrant.schema_map_id == schema_map.id)
        .values(schema_map_id=successor.id)
    )
    log_audit(
        db,
        actor=actor,
        action="SCHEMA_MAP_VERSIONED",
        entity="SchemaMap",
        entity_id=successor.id,
        data={
            "previous_id": schema_map.id,
            "previous_version": schema_map.version,
            "version": successor.version,
        },
    )
    db.commit()
    db.refresh(successor)
    logger.info(
        "Schema map versioned",
        extra={"schema_map_id": successor.id, "previous_id": schema_map.id, "version": successor.version},
    )
    return successor


def generate_entity_specs(
    registry: RepositoryRegistry,
    entities: Iterable[str] | None = None,
    actions: Iterable[str] | None = None,
) -> dict[str, EntitySpec]:
    """Derive entity specs from the column metadata of registered repositories."""

    requested = list(entities) if entities is not None else registry.entities()
    wanted_actions = set(actions) if actions is not None else set(READ_ACTIONS)
    specs: dict[str, EntitySpec] = {}
    for entity in requested:
        repository = registry.get(entity)
        if repository is None or not hasattr(repository, "describe"):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=error_response("ENTITY_NOT_REGISTERED", f"No repository registered for {entity}."),
            )
        fields = repository.describe()
        entity_actions = [
            action for action in KNOWN_ACTIONS if action in wanted_actions and action in repository.actions
        ]
        specs[entity] = EntitySpec(
            allowedActions=entity_actions,
            allowedFields=[field.name for field in fields],
            requiredFields=(
                [field.name for field in fields if field.required] if "create" in entity_actions else []
            ),
            fieldTypes={field.name: field.type for field in fields},
        )
    return specs


def serialize_for_prompt(schema_maps: Sequence[SchemaMap]) -> str:
    """Render active schema maps as plain text for the LLM system instruction."""

    blocks: list[str] = []
    for schema_map in schema_maps:
        if not schema_map.is_active:
            continue
        lines = [f"Schema Map: {schema_map.name} ({schema_map.description or 'No description'})"]
        for entity, spec in sorted((schema_map.entity_specs or {}).items()):
            lines.append(f"Model: {entity}")
            lines.append(f"  Actions: {', '.join(spec.get('allowedActions') or []) or 'None'}")
            lines.append(f"  Allowed Fields: {', '.join(spec.get('allowedFields') or []) or 'None'}")
            lines.append(f"  Required Fields: {', '.join(spec.get('requiredFields') or []) or 'None'}")
            field_types = spec.get("fieldTypes") or {}
            if field_types:
                lines.append("  Field Types:")
                lines.extend(f"    - {field}: {type_name}" for field, type_name in field_types.items())
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


__all__ = [
    "create_schema_map",
    "update_schema_map",
    "get_schema_map",
    "list_schema_maps",
    "generate_entity_specs",
    "serialize_for_prompt",
    "is_referenced_by_execution",
]
