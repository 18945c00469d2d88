"""Pydantic schemas for schema maps and their entity specs."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

KNOWN_ACTIONS = (
    "findMany",
    "findFirst",
    "findUnique",
    "count",
    "create",
    "update",
    "updateMany",
    "delete",
    "deleteMany",
)

# Accepted spellings (lower-cased) mapped to the canonical type name.
FIELD_TYPE_ALIASES = {
    "string": "string",
    "number": "number",
    "int": "integer",
    "integer": "integer",
    "float": "float",
    "decimal": "number",
    "boolean": "boolean",
    "date": "date",
    "datetime": "datetime",
    "json": "json",
}


class EntitySpec(BaseModel):
    """Whitelist for one entity inside a schema map."""

    allowedActions: list[str]
    allowedFields: list[str]
    requiredFields: list[str] = Field(default_factory=list)
    fieldTypes: dict[str, str] = Field(default_factory=dict)
    redactedFields: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @field_validator("allowedActions")
    @classmethod
    def _known_actions(cls, value: list[str]) -> list[str]:
        unknown = [action for action in value if action not in KNOWN_ACTIONS]
        if unknown:
            raise ValueError(f"Unknown actions: {', '.join(unknown)}")
        return list(dict.fromkeys(value))

    @field_validator("fieldTypes")
    @classmethod
    def _canonical_types(cls, value: dict[str, str]) -> dict[str, str]:
        canonical: dict[str, str] = {}
        for field, type_name in value.items():
            normalized = FIELD_TYPE_ALIASES.get(str(type_name).lower())
            if normalized is None:
                raise ValueError(f"Unsupported type {type_name} for field {field}")
            canonical[field] = normalized
        return canonical

    @model_validator(mode="after")
    def _fields_are_allowed(self) -> "EntitySpec":
        allowed = set(self.allowedFields)
        for label, fields in (
            ("requiredFields", self.requiredFields),
            ("fieldTypes", list(self.fieldTypes)),
            ("redactedFields", self.redactedFields),
        ):
            outside = [field for field in fields if field not in allowed]
            if outside:
                raise ValueError(f"{label} not in allowedFields: {', '.join(outside)}")
        return self


class SchemaMapCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    entity_specs: dict[str, EntitySpec]
    owner_id: int | None = None
    org_id: str | None = None
    is_active: bool = True


class SchemaMapUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = None
    entity_specs: dict[str, EntitySpec] | None = None
    is_active: bool | None = None


class SchemaMapRead(BaseModel):
    id: int
    name: str
    description: str | None = None
    version: str
    entity_specs: dict[str, Any]
    is_active: bool
    owner_id: int | None = None
    org_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SchemaMapGenerate(BaseModel):
    """Introspect registered repositories into entity specs."""

    entities: list[str] | None = None
    actions: list[str] | None = None
    name: str | None = Field(default=None, min_length=1, max_length=120)
    persist: bool = False

    @field_validator("actions")
    @classmethod
    def _known_actions(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        unknown = [action for action in value if action not in KNOWN_ACTIONS]
        if unknown:
            raise ValueError(f"Unknown actions: {', '.join(unknown)}")
        return value


class SchemaMapGenerated(BaseModel):
    entity_specs: dict[str, EntitySpec]
    schema_map: SchemaMapRead | None = None
