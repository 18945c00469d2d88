"""Pydantic schemas for agent permission grants."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from query_sandbox.models.permission_grant import DEFAULT_ALLOWED_ACTIONS, PermissionLevel
from query_sandbox.schemas.schema_map import KNOWN_ACTIONS


def _check_actions(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    unknown = [action for action in value if action not in KNOWN_ACTIONS]
    if unknown:
        raise ValueError(f"Unknown actions: {', '.join(unknown)}")
    return list(dict.fromkeys(value))


class PermissionGrantCreate(BaseModel):
    agent_id: int = Field(gt=0)
    schema_map_id: int = Field(gt=0)
    level: PermissionLevel = PermissionLevel.READ_ONLY
    allowed_entities: list[str] = Field(default_factory=list)
    allowed_actions: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ACTIONS))
    max_queries_per_day: int = Field(default=100, ge=0)
    requires_approval: bool = True

    @field_validator("allowed_actions")
    @classmethod
    def _known_actions(cls, value):
        return _check_actions(value)


class PermissionGrantUpdate(BaseModel):
    level: PermissionLevel | None = None
    allowed_entities: list[str] | None = None
    allowed_actions: list[str] | None = None
    max_queries_per_day: int | None = Field(default=None, ge=0)
    requires_approval: bool | None = None
    is_active: bool | None = None

    @field_validator("allowed_actions")
    @classmethod
    def _known_actions(cls, value):
        return _check_actions(value)


class PermissionGrantRead(BaseModel):
    id: int
    agent_id: int
    schema_map_id: int
    level: PermissionLevel
    allowed_entities: list[str]
    allowed_actions: list[str]
    max_queries_per_day: int
    requires_approval: bool
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
