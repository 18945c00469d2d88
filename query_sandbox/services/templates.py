"""Query template management and rendering."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from query_sandbox.models.query_template import QueryTemplate
from query_sandbox.schemas.query_template import QueryTemplateCreate, QueryTemplateUpdate
from query_sandbox.utils.audit import log_audit
from query_sandbox.utils.errors import error_response

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class TemplateRenderError(ValueError):
    """Raised when a template cannot be rendered into a params object."""


def placeholders(template_text: str) -> set[str]:
    return set(PLACEHOLDER_RE.findall(template_text))


def render_template(template_text: str, values: Mapping[str, Any]) -> dict[str, Any]:
    """Substitute ``{{name}}`` placeholders with JSON values and parse the result."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            raise TemplateRenderError(f"Missing value for parameter {name}")
        return json.dumps(values[name])

    rendered = PLACEHOLDER_RE.sub(_replace, template_text)
    try:
        params = json.loads(rendered)
    except json.JSONDecodeError as exc:
        raise TemplateRenderError(f"Rendered template is not valid JSON: {exc.msg}") from exc
    if not isinstance(params, dict):
        raise TemplateRenderError("Rendered template must be a JSON object")
    return params


def _check_template_text(template_text: str, parameter_schema: Mapping[str, Any]) -> None:
    declared = set((parameter_schema or {}).get("properties", {}))
    undeclared = placeholders(template_text) - declared
    if undeclared:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_response(
                "TEMPLATE_INVALID",
                f"Undeclared template parameters: {', '.join(sorted(undeclared))}",
            ),
        )
    try:
        render_template(template_text, {name: None for name in declared})
    except TemplateRenderError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_response("TEMPLATE_INVALID", str(exc)),
        ) from exc


def get_template(db: Session, template_id: int) -> QueryTemplate:
    template = db.get(QueryTemplate, template_id)
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("QUERY_TEMPLATE_NOT_FOUND", "Query template not found."),
        )
    return template


def list_templates(db: Session, *, active_only: bool = True) -> list[QueryTemplate]:
    stmt = select(QueryTemplate).order_by(QueryTemplate.id)
    if active_only:
        stmt = stmt.where(QueryTemplate.is_active.is_(True))
    return list(db.scalars(stmt))


def create_template(db: Session, payload: QueryTemplateCreate, *, actor: str) -> QueryTemplate:
    existing = db.scalar(select(QueryTemplate).where(QueryTemplate.name == payload.name))
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response("QUERY_TEMPLATE_EXISTS", "A template with this name already exists."),
        )
    data = payload.model_dump()
    _check_template_text(payload.template_text, data["parameter_schema"])
    template = QueryTemplate(**data)
    db.add(template)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action="QUERY_TEMPLATE_CREATED",
        entity="QueryTemplate",
        entity_id=template.id,
        data={"name": template.name, "target_entity": template.target_entity, "action": template.action},
    )
    db.commit()
    db.refresh(template)
    return template


def update_template(
    db: Session, template_id: int, payload: QueryTemplateUpdate, *, actor: str
) -> QueryTemplate:
    template = get_template(db, template_id)
    changes = payload.model_dump(exclude_unset=True)
    template_text = changes.get("template_text", template.template_text)
    parameter_schema = changes.get("parameter_schema", template.parameter_schema)
    _check_template_text(template_text, parameter_schema)
    for field, value in changes.items():
        setattr(template, field, value)
    log_audit(
        db,
        actor=actor,
        action="QUERY_TEMPLATE_UPDATED",
        entity="QueryTemplate",
        entity_id=template.id,
        data={"fields": sorted(changes)},
    )
    db.commit()
    db.refresh(template)
    return template


__all__ = [
    "TemplateRenderError",
    "create_template",
    "get_template",
    "list_templates",
    "placeholders",
    "render_template",
    "update_template",
]
