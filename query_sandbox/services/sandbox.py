"""Query sandbox: authorization plus schema and type validation.

This is the only gate between a generated query and the data store. It
never mutates the params it is given.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal, Mapping, Sequence

from sqlalchemy.orm import Session

from query_sandbox.config import get_settings
from query_sandbox.models.permission_grant import PermissionGrant
from query_sandbox.services.permissions import (
    active_grants_for_agent,
    covering_grants,
    grant_permits,
    level_allows,
)
from query_sandbox.utils.time import parse_iso_utc

logger = logging.getLogger(__name__)

SandboxMode = Literal["strict", "permissive"]

KNOWN_PARAM_KEYS = ("where", "select", "data", "orderBy", "take", "skip", "distinct")
FILTER_OPERATORS = frozenset(
    {"equals", "not", "in", "notIn", "lt", "lte", "gt", "gte", "contains", "startsWith", "endsWith"}
)
STRING_OPERATORS = frozenset({"contains", "startsWith", "endsWith"})
LOGICAL_KEYS = frozenset({"AND", "OR", "NOT"})
WRITE_ACTIONS_WITH_DATA = frozenset({"create", "update", "updateMany"})
SINGLE_RECORD_ACTIONS = frozenset({"findUnique", "update", "delete"})
MAX_NESTING_DEPTH = 8

SQL_INJECTION_PATTERNS = (
    re.compile(r"'\s*OR\s*'1'\s*=\s*'1", re.IGNORECASE),
    re.compile(r"'\s*OR\s*1\s*=\s*1", re.IGNORECASE),
    re.compile(r"'\s*;\s*DROP\s+TABLE", re.IGNORECASE),
    re.compile(r"'\s*;\s*DELETE\s+FROM", re.IGNORECASE),
    re.compile(r"'\s*UNION\s+SELECT", re.IGNORECASE),
    re.compile(r"'\s*;\s*INSERT\s+INTO", re.IGNORECASE),
    re.compile(r"'\s*;\s*UPDATE\s+", re.IGNORECASE),
    re.compile(r"'\s*--"),
    re.compile(r"/\*"),
)


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    grant_id: int | None = None
    schema_map_id: int | None = None
    requires_approval: bool = True


def value_matches_type(value: Any, type_name: str) -> bool:
    """Return True when ``value`` fits the declared field type (``None`` always does)."""

    if value is None:
        return True
    if type_name == "string":
        return isinstance(value, str)
    if type_name in {"number", "float"}:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_name == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if type_name == "boolean":
        return isinstance(value, bool)
    if type_name in {"date", "datetime"}:
        if not isinstance(value, str):
            return False
        try:
            parse_iso_utc(value)
        except ValueError:
            try:
                date.fromisoformat(value)
            except ValueError:
                return False
        return True
    return True


def contains_sql_injection(value: str) -> bool:
    return any(pattern.search(value) for pattern in SQL_INJECTION_PATTERNS)


class _ParamsChecker:
    """Walks a params document collecting errors, warnings and constrained fields."""

    def __init__(self, entity: str, spec: Mapping[str, Any], mode: SandboxMode) -> None:
        self.entity = entity
        self.allowed_fields = set(spec.get("allowedFields") or [])
        self.field_types: Mapping[str, str] = spec.get("fieldTypes") or {}
        self.mode = mode
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.constrained: set[str] = set()

    def _type_issue(self, message: str) -> None:
        if self.mode == "strict":
            self.errors.append(message)
        else:
            self.warnings.append(message)

    def field_allowed(self, name: str, path: str) -> bool:
        if name not in self.allowed_fields:
            self.errors.append(f"Field {name} is not allowed on {self.entity} ({path})")
            return False
        return True

    def check_value(self, name: str, value: Any) -> None:
        declared = self.field_types.get(name)
        if declared and not value_matches_type(value, declared):
            self._type_issue(f"Field {name} should be of type {declared}")

    def check_operator(self, name: str, operator: str, value: Any, path: str) -> None:
        if operator not in FILTER_OPERATORS:
            self.errors.append(f"Unsupported filter operator {operator} ({path})")
            return
        if operator in {"in", "notIn"}:
            if not isinstance(value, list):
                self.errors.append(f"Operator {operator} expects a list ({path})")
                return
            for item in value:
                self.check_value(name, item)
        elif operator == "not" and isinstance(value, Mapping):
            for inner, inner_value in value.items():
                self.check_operator(name, inner, inner_value, f"{path}.{inner}")
        elif operator in STRING_OPERATORS:
            if not isinstance(value, str):
                self._type_issue(f"Operator {operator} on field {name} expects a string")
        else:
            self.check_value(name, value)

    def check_where(self, where: Any, path: str = "where", depth: int = 0) -> None:
        if depth > MAX_NESTING_DEPTH:
            self.errors.append(f"Filter nesting is too deep ({path})")
            return
        if not isinstance(where, Mapping):
            self.errors.append(f"{path} must be an object")
            return
        for key, value in where.items():
            if key in LOGICAL_KEYS:
                if isinstance(value, list) and not value:
                    self.errors.append(f"{path}.{key} must not be empty")
                branches = value if isinstance(value, list) else [value]
                for index, branch in enumerate(branches):
                    self.check_where(branch, f"{path}.{key}[{index}]", depth + 1)
                continue
            if not self.field_allowed(key, path):
                continue
            self.constrained.add(key)
            if isinstance(value, Mapping):
                if not value:
                    self.errors.append(f"Empty filter for field {key} ({path})")
                for operator, operand in value.items():
                    self.check_operator(key, operator, operand, f"{path}.{key}.{operator}")
            else:
                self.check_value(key, value)

    def check_select(self, select: Any) -> None:
        if not isinstance(select, Mapping):
            self.errors.append("select must be an object")
            return
        for name, flag in select.items():
            self.field_allowed(name, "select")
            if not isinstance(flag, bool):
                self.errors.append(f"select.{name} must be a boolean")

    def check_data(self, data: Any) -> None:
        if not isinstance(data, Mapping):
            self.errors.append("data must be an object")
            return
        for name, value in data.items():
            if self.field_allowed(name, "data"):
                self.check_value(name, value)

    def check_order_by(self, order_by: Any) -> None:
        items = order_by if isinstance(order_by, list) else [order_by]
        for item in items:
            if not isinstance(item, Mapping):
                self.errors.append("orderBy must be an object or a list of objects")
                continue
            for name, direction in item.items():
                self.field_allowed(name, "orderBy")
                if direction not in {"asc", "desc"}:
                    self.errors.append(f"orderBy.{name} must be 'asc' or 'desc'")

    def check_distinct(self, distinct: Any) -> None:
        names = [distinct] if isinstance(distinct, str) else distinct
        if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
            self.errors.append("distinct must be a field name or a list of field names")
            return
        for name in names:
            self.field_allowed(name, "distinct")


def _scan_strings(value: Any, path: str, errors: list[str]) -> None:
    if isinstance(value, str):
        if contains_sql_injection(value):
            errors.append(f"Potential SQL injection detected in {path}")
    elif isinstance(value, Mapping):
        for key, item in value.items():
            _scan_strings(item, f"{path}.{key}", errors)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _scan_strings(item, f"{path}[{index}]", errors)


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _denial_reason(grants: Sequence[PermissionGrant], entity: str, action: str) -> str:
    covering = covering_grants(grants, entity)
    if not covering:
        return f"Entity {entity} is not permitted for this agent"
    if all(not level_allows(grant.level, action) for grant in covering):
        return f"Action {action} is not allowed by permission level {covering[0].level.value}"
    return f"Action {action} is not allowed on {entity}"


def validate_query(
    db: Session,
    agent_id: int,
    target_entity: str,
    action: str,
    params: Mapping[str, Any] | None,
    mode: SandboxMode | None = None,
    *,
    grants: Sequence[PermissionGrant] | None = None,
) -> ValidationResult:
    """Authorize and schema-check a structured query for ``agent_id``."""

    settings = get_settings()
    mode = mode or settings.DEFAULT_SANDBOX_MODE
    if grants is None:
        grants = active_grants_for_agent(db, agent_id)
    if not grants:
        return ValidationResult(valid=False, errors=["Agent has no permissions"])

    authorizing = next((grant for grant in grants if grant_permits(grant, target_entity, action)), None)
    if authorizing is None:
        return ValidationResult(valid=False, errors=[_denial_reason(grants, target_entity, action)])

    requires_approval = any(grant.requires_approval for grant in covering_grants(grants, target_entity))
    result = ValidationResult(
        valid=False,
        grant_id=authorizing.id,
        schema_map_id=authorizing.schema_map_id,
        requires_approval=requires_approval,
    )

    if params is None:
        params = {}
    if not isinstance(params, Mapping):
        result.errors.append("params must be an object")
        return result

    spec = authorizing.schema_map.entity_spec(target_entity) or {}
    checker = _ParamsChecker(target_entity, spec, mode)

    for key in params:
        if key not in KNOWN_PARAM_KEYS:
            checker.errors.append(f"Unsupported query parameter {key}")

    if "where" in params:
        checker.check_where(params["where"])
    where = params.get("where")
    if action in SINGLE_RECORD_ACTIONS and not (isinstance(where, Mapping) and where):
        checker.errors.append(f"where is required for {action}")
    if "select" in params:
        checker.check_select(params["select"])
    if "data" in params:
        if action not in WRITE_ACTIONS_WITH_DATA:
            checker.errors.append(f"data is not accepted for {action}")
        else:
            checker.check_data(params["data"])
    elif action in WRITE_ACTIONS_WITH_DATA:
        checker.errors.append(f"data is required for {action}")
    if "orderBy" in params:
        checker.check_order_by(params["orderBy"])
    if "distinct" in params:
        checker.check_distinct(params["distinct"])
    for key in ("take", "skip"):
        if key in params and not _is_non_negative_int(params[key]):
            checker.errors.append(f"{key} must be a non-negative integer")

    required = spec.get("requiredFields") or []
    if action == "create":
        data = params.get("data") if isinstance(params.get("data"), Mapping) else {}
        for name in required:
            if name not in data:
                checker.errors.append(f"Required field {name} is missing in create data")
    else:
        for name in required:
            if name not in checker.constrained:
                checker.errors.append(f"Required field {name} is missing in where")

    _scan_strings(dict(params), "params", checker.errors)

    if mode == "permissive":
        take = params.get("take")
        if action == "findMany" and take is None:
            checker.warnings.append("Limit (take) parameter is recommended for findMany operations")
        elif _is_non_negative_int(take) and take > settings.RECOMMENDED_MAX_TAKE:
            checker.warnings.append(
                f"Take value ({take}) exceeds recommended maximum ({settings.RECOMMENDED_MAX_TAKE})"
            )

    result.errors = checker.errors
    result.warnings = checker.warnings
    result.valid = not result.errors
    logger.info(
        "Query validated",
        extra={
            "agent_id": agent_id,
            "entity": target_entity,
            "action": action,
            "mode": mode,
            "valid": result.valid,
            "error_count": len(result.errors),
        },
    )
    return result


__all__ = [
    "KNOWN_PARAM_KEYS",
    "SandboxMode",
    "ValidationResult",
    "contains_sql_injection",
    "validate_query",
    "value_matches_type",
]
