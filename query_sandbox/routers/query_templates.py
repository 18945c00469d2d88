"""Query template administration endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from query_sandbox.db import get_db
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.models.query_template import QueryTemplate
from query_sandbox.schemas.query_template import QueryTemplateCreate, QueryTemplateRead, QueryTemplateUpdate
from query_sandbox.security import require_scope
from query_sandbox.services import templates as template_service
from query_sandbox.utils.audit import actor_from_api_key

router = APIRouter(prefix="/query-templates", tags=["query-templates"])


@router.post("", response_model=QueryTemplateRead, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: QueryTemplateCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> QueryTemplate:
    return template_service.create_template(db, payload, actor=actor_from_api_key(api_key))


@router.get(
    "",
    response_model=list[QueryTemplateRead],
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def list_templates(active_only: bool = True, db: Session = Depends(get_db)) -> list[QueryTemplate]:
    return template_service.list_templates(db, active_only=active_only)


@router.get(
    "/{template_id}",
    response_model=QueryTemplateRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def get_template(template_id: int, db: Session = Depends(get_db)) -> QueryTemplate:
    return template_service.get_template(db, template_id)


@router.patch("/{template_id}", response_model=QueryTemplateRead)
def update_template(
    template_id: int,
    payload: QueryTemplateUpdate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> QueryTemplate:
    return template_service.update_template(db, template_id, payload, actor=actor_from_api_key(api_key))
