"""Schema map administration endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from query_sandbox.db import get_db
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.models.schema_map import SchemaMap
from query_sandbox.schemas.schema_map import (
    SchemaMapCreate,
    SchemaMapGenerate,
    SchemaMapGenerated,
    SchemaMapRead,
    SchemaMapUpdate,
)
from query_sandbox.security import require_scope
from query_sandbox.services import schema_maps as schema_map_service
from query_sandbox.services.repositories import RepositoryRegistry, get_repository_registry
from query_sandbox.utils.audit import actor_from_api_key

router = APIRouter(prefix="/schema-maps", tags=["schema-maps"])


@router.post("", response_model=SchemaMapRead, status_code=status.HTTP_201_CREATED)
def create_schema_map(
    payload: SchemaMapCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> SchemaMap:
    return schema_map_service.create_schema_map(db, payload, actor=actor_from_api_key(api_key))


@router.post("/generate", response_model=SchemaMapGenerated)
def generate_schema_map(
    payload: SchemaMapGenerate,
    db: Session = Depends(get_db),
    registry: RepositoryRegistry = Depends(get_repository_registry),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> SchemaMapGenerated:
    """Derive entity specs from the registered repositories, optionally saving them."""

    specs = schema_map_service.generate_entity_specs(registry, payload.entities, payload.actions)
    created = None
    if payload.persist:
        created = schema_map_service.create_schema_map(
            db,
            SchemaMapCreate(name=payload.name or "generated", entity_specs=specs),
            actor=actor_from_api_key(api_key),
        )
    return SchemaMapGenerated(
        entity_specs=specs,
        schema_map=SchemaMapRead.model_validate(created) if created is not None else None,
    )


@router.get(
    "",
    response_model=list[SchemaMapRead],
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def list_schema_maps(
    is_active: bool | None = None,
    org_id: str | None = None,
    db: Session = Depends(get_db),
) -> list[SchemaMap]:
    return schema_map_service.list_schema_maps(db, is_active=is_active, org_id=org_id)


@router.get(
    "/{schema_map_id}",
    response_model=SchemaMapRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def get_schema_map(schema_map_id: int, db: Session = Depends(get_db)) -> SchemaMap:
    return schema_map_service.get_schema_map(db, schema_map_id)


@router.patch("/{schema_map_id}", response_model=SchemaMapRead)
def update_schema_map(
    schema_map_id: int,
    payload: SchemaMapUpdate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> SchemaMap:
    """Update a map; once executed requests reference it a new version is created."""

    return schema_map_service.update_schema_map(
        db, schema_map_id, payload, actor=actor_from_api_key(api_key)
    )
