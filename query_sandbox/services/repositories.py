"""Typed data-store adapters dispatched to by the query executor."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    Numeric,
    and_,
    delete,
    false,
    func,
    not_,
    or_,
    select,
    true,
    update,
)
from sqlalchemy.orm import Session

from query_sandbox.models.agent import Agent
from query_sandbox.models.user import User
from query_sandbox.utils.time import ensure_utc, parse_iso_utc

READ_ACTIONS = frozenset({"findMany", "findFirst", "findUnique", "count"})
WRITE_ACTIONS = frozenset({"create", "update", "updateMany", "delete", "deleteMany"})
ALL_ACTIONS = READ_ACTIONS | WRITE_ACTIONS


class RepositoryError(Exception):
    """Raised when a repository refuses or fails to run a query."""


class Repository(Protocol):
    entity: str
    actions: frozenset[str]

    def run(self, db: Session, action: str, params: Mapping[str, Any]) -> Any:
        ...


@dataclass(frozen=True)
class FieldInfo:
    name: str
    type: str
    required: bool


def _type_name(column) -> str:
    column_type = column.type
    if isinstance(column_type, Boolean):
        return "boolean"
    if isinstance(column_type, Integer):
        return "integer"
    if isinstance(column_type, (Float, Numeric)):
        return "number"
    if isinstance(column_type, DateTime):
        return "datetime"
    if isinstance(column_type, Date):
        return "date"
    if isinstance(column_type, JSON):
        return "json"
    return "string"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    return value


class SqlAlchemyRepository:
    """Runs Prisma-style structured queries against one mapped model.

    ``fields`` maps the public (agent-facing) field name to the mapped
    attribute. Only those fields can be filtered, selected or written.
    """

    def __init__(
        self,
        entity: str,
        model: type,
        fields: Mapping[str, str],
        actions: Iterable[str] = ALL_ACTIONS,
    ) -> None:
        self.entity = entity
        self.model = model
        self.fields = dict(fields)
        self.actions = frozenset(actions)
        table_columns = model.__table__.columns
        self._columns = {public: table_columns[attr] for public, attr in self.fields.items()}

    # -- introspection -------------------------------------------------
    def describe(self) -> list[FieldInfo]:
        """Return public field metadata derived from the column definitions."""

        infos: list[FieldInfo] = []
        for public, column in self._columns.items():
            required = (
                not column.nullable
                and not column.primary_key
                and column.default is None
                and column.server_default is None
            )
            infos.append(FieldInfo(name=public, type=_type_name(column), required=required))
        return infos

    # -- helpers -------------------------------------------------------
    def _attr(self, field: str):
        try:
            return getattr(self.model, self.fields[field])
        except KeyError as exc:
            raise RepositoryError(f"Unknown field {field} for {self.entity}") from exc

    def _coerce(self, field: str, value: Any) -> Any:
        column = self._columns[field]
        if isinstance(value, str) and isinstance(column.type, DateTime):
            return parse_iso_utc(value)
        if isinstance(value, str) and isinstance(column.type, Date):
            return date.fromisoformat(value)
        return value

    def _field_condition(self, field: str, condition: Any):
        attr = self._attr(field)
        if not isinstance(condition, Mapping):
            if condition is None:
                return attr.is_(None)
            return attr == self._coerce(field, condition)

        clauses = []
        for operator, raw in condition.items():
            if operator in {"in", "notIn"}:
                values = [self._coerce(field, item) for item in raw or []]
                clause = attr.in_(values) if operator == "in" else attr.not_in(values)
            elif operator == "not":
                if isinstance(raw, Mapping):
                    clause = not_(self._field_condition(field, raw))
                elif raw is None:
                    clause = attr.is_not(None)
                else:
                    clause = attr != self._coerce(field, raw)
            elif operator == "equals":
                clause = attr.is_(None) if raw is None else attr == self._coerce(field, raw)
            elif operator == "lt":
                clause = attr < self._coerce(field, raw)
            elif operator == "lte":
                clause = attr <= self._coerce(field, raw)
            elif operator == "gt":
                clause = attr > self._coerce(field, raw)
            elif operator == "gte":
                clause = attr >= self._coerce(field, raw)
            elif operator == "contains":
                clause = attr.contains(str(raw), autoescape=True)
            elif operator == "startsWith":
                clause = attr.startswith(str(raw), autoescape=True)
            elif operator == "endsWith":
                clause = attr.endswith(str(raw), autoescape=True)
            else:
                raise RepositoryError(f"Unsupported filter operator {operator}")
            clauses.append(clause)
        return and_(true(), *clauses)

    def _branches(self, value: Any) -> list:
        items = value if isinstance(value, list) else [value]
        return [self._where(item) if item else true() for item in items]

    def _where(self, where: Mapping[str, Any] | None):
        if not where:
            return None
        clauses = []
        for key, value in where.items():
            if key == "AND":
                clauses.append(and_(true(), *self._branches(value)))
            elif key == "OR":
                # An empty OR matches nothing.
                clauses.append(or_(false(), *self._branches(value)))
            elif key == "NOT":
                branches = self._branches(value)
                if branches:
                    clauses.append(not_(and_(*branches)))
            else:
                clauses.append(self._field_condition(key, value))
        return and_(*clauses) if clauses else None

    def _order_by(self, order_by: Any) -> list:
        if not order_by:
            return [self.model.id.asc()]
        items = order_by if isinstance(order_by, list) else [order_by]
        clauses = []
        for item in items:
            for field, direction in item.items():
                attr = self._attr(field)
                clauses.append(attr.desc() if str(direction).lower() == "desc" else attr.asc())
        return clauses

    def _serialize(self, row: Any, select_fields: Mapping[str, Any] | None) -> dict[str, Any]:
        if select_fields:
            wanted = [field for field, flag in select_fields.items() if flag]
        else:
            wanted = list(self.fields)
        return {field: _jsonable(getattr(row, self.fields[field])) for field in wanted}

    def _values(self, data: Mapping[str, Any] | None) -> dict[str, Any]:
        if not data:
            raise RepositoryError(f"{self.entity} write requires data")
        values: dict[str, Any] = {}
        for field, value in data.items():
            if field not in self.fields:
                raise RepositoryError(f"Unknown field {field} for {self.entity}")
            values[self.fields[field]] = self._coerce(field, value)
        return values

    def _select(self, params: Mapping[str, Any]):
        stmt = select(self.model)
        clause = self._where(params.get("where"))
        if clause is not None:
            stmt = stmt.where(clause)
        return stmt.order_by(*self._order_by(params.get("orderBy")))

    def _distinct(self, rows: list[dict[str, Any]], fields: Any) -> list[dict[str, Any]]:
        if not fields:
            return rows
        keys = [fields] if isinstance(fields, str) else list(fields)
        seen: set[tuple] = set()
        unique: list[dict[str, Any]] = []
        for row in rows:
            marker = tuple(repr(row.get(key)) for key in keys)
            if marker not in seen:
                seen.add(marker)
                unique.append(row)
        return unique

    def _first(self, db: Session, params: Mapping[str, Any]):
        return db.scalars(self._select(params).limit(1)).first()

    def _target(self, db: Session, action: str, params: Mapping[str, Any]):
        if self._where(params.get("where")) is None:
            raise RepositoryError(f"{self.entity}.{action} requires a where filter")
        return self._first(db, params)

    # -- dispatch ------------------------------------------------------
    def run(self, db: Session, action: str, params: Mapping[str, Any]) -> Any:
        if action not in self.actions:
            raise RepositoryError(f"Action {action} is not supported for {self.entity}")

        select_fields = params.get("select")

        if action == "findMany":
            stmt = self._select(params)
            skip = int(params.get("skip") or 0)
            take = params.get("take")
            distinct = params.get("distinct")
            if not distinct:
                stmt = stmt.offset(skip)
                if take is not None:
                    stmt = stmt.limit(int(take))
                return [self._serialize(row, select_fields) for row in db.scalars(stmt)]

            rows = self._distinct([self._serialize(row, None) for row in db.scalars(stmt)], distinct)
            rows = rows[skip : skip + int(take)] if take is not None else rows[skip:]
            if select_fields:
                wanted = [field for field, flag in select_fields.items() if flag]
                rows = [{field: row[field] for field in wanted} for row in rows]
            return rows

        if action == "findFirst":
            row = self._first(db, params)
            return self._serialize(row, select_fields) if row is not None else None

        if action == "findUnique":
            row = self._target(db, action, params)
            return self._serialize(row, select_fields) if row is not None else None

        if action == "count":
            stmt = select(func.count()).select_from(self.model)
            clause = self._where(params.get("where"))
            if clause is not None:
                stmt = stmt.where(clause)
            return int(db.scalar(stmt) or 0)

        if action == "create":
            row = self.model(**self._values(params.get("data")))
            db.add(row)
            db.flush()
            return self._serialize(row, select_fields)

        if action == "update":
            row = self._target(db, action, params)
            if row is None:
                raise RepositoryError(f"{self.entity} record to update not found")
            for attr, value in self._values(params.get("data")).items():
                setattr(row, attr, value)
            db.flush()
            return self._serialize(row, select_fields)

        if action == "delete":
            row = self._target(db, action, params)
            if row is None:
                raise RepositoryError(f"{self.entity} record to delete not found")
            payload = self._serialize(row, select_fields)
            db.delete(row)
            db.flush()
            return payload

        clause = self._where(params.get("where"))
        if action == "updateMany":
            stmt = update(self.model).values(**self._values(params.get("data")))
        else:
            stmt = delete(self.model)
        if clause is not None:
            stmt = stmt.where(clause)
        result = db.execute(stmt.execution_options(synchronize_session=False))
        return {"count": result.rowcount}


class RepositoryRegistry:
    """Fixed entity name to repository map; unknown lookups fail closed."""

    def __init__(self, repositories: Iterable[Repository] = ()) -> None:
        self._repositories: dict[str, Repository] = {}
        for repository in repositories:
            self.register(repository)

    def register(self, repository: Repository) -> None:
        self._repositories[repository.entity] = repository

    def entities(self) -> list[str]:
        return sorted(self._repositories)

    def get(self, entity: str) -> Repository | None:
        return self._repositories.get(entity)

    def resolve(self, entity: str, action: str) -> Repository:
        repository = self._repositories.get(entity)
        if repository is None:
            raise RepositoryError(f"No repository registered for {entity}")
        if action not in repository.actions:
            raise RepositoryError(f"Action {action} is not supported for {entity}")
        return repository


USER_FIELDS = {
    "id": "id",
    "username": "username",
    "email": "email",
    "isActive": "is_active",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

AGENT_FIELDS = {
    "id": "id",
    "name": "name",
    "description": "description",
    "ownerId": "owner_id",
    "isActive": "is_active",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def build_default_registry() -> RepositoryRegistry:
    """Return the registry exposing the service's own tables to agents."""

    return RepositoryRegistry(
        [
            SqlAlchemyRepository("User", User, USER_FIELDS),
            SqlAlchemyRepository("Agent", Agent, AGENT_FIELDS),
        ]
    )


_registry: RepositoryRegistry | None = None


def get_repository_registry() -> RepositoryRegistry:
    """FastAPI dependency returning the process-wide registry."""

    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


__all__ = [
    "ALL_ACTIONS",
    "READ_ACTIONS",
    "WRITE_ACTIONS",
    "FieldInfo",
    "Repository",
    "RepositoryError",
    "RepositoryRegistry",
    "SqlAlchemyRepository",
    "build_default_registry",
    "get_repository_registry",
]
