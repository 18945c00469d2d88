"""Pydantic schemas for query templates."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from query_sandbox.schemas.schema_map import KNOWN_ACTIONS

ParameterType = Literal["number", "integer", "date", "date_range", "identifier", "string", "enum"]


class ParameterSpec(BaseModel):
    type: ParameterType
    pattern: str | None = None
    default: Any = None
    options: list[str] | None = None
    description: str | None = None

    @model_validator(mode="after")
    def _enum_needs_options(self) -> "ParameterSpec":
        if self.type == "enum" and not self.options:
            raise ValueError("enum parameters need options")
        return self


class ParameterSchema(BaseModel):
    properties: dict[str, ParameterSpec] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _required_are_declared(self) -> "ParameterSchema":
        missing = [name for name in self.required if name not in self.properties]
        if missing:
            raise ValueError(f"required parameters not declared: {', '.join(missing)}")
        return self


class QueryTemplateBase(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    template_text: str = Field(min_length=2)
    target_entity: str = Field(min_length=1, max_length=100)
    action: str
    parameter_schema: ParameterSchema = Field(default_factory=ParameterSchema)
    keywords: list[str] = Field(min_length=1)
    is_auto_approved: bool = False
    category: str | None = None

    @field_validator("action")
    @classmethod
    def _known_action(cls, value: str) -> str:
        if value not in KNOWN_ACTIONS:
            raise ValueError(f"Unknown action {value}")
        return value

    @field_validator("keywords")
    @classmethod
    def _normalise_keywords(cls, value: list[str]) -> list[str]:
        cleaned = [keyword.strip().lower() for keyword in value if keyword.strip()]
        if not cleaned:
            raise ValueError("at least one keyword is required")
        return cleaned


class QueryTemplateCreate(QueryTemplateBase):
    is_active: bool = True


class QueryTemplateUpdate(BaseModel):
    description: str | None = None
    template_text: str | None = None
    parameter_schema: ParameterSchema | None = None
    keywords: list[str] | None = None
    is_auto_approved: bool | None = None
    category: str | None = None
    is_active: bool | None = None

    @field_validator("keywords")
    @classmethod
    def _normalise_keywords(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        cleaned = [keyword.strip().lower() for keyword in value if keyword.strip()]
        if not cleaned:
            raise ValueError("at least one keyword is required")
        return cleaned


class QueryTemplateRead(BaseModel):
    id: int
    name: str
    description: str | None = None
    template_text: str
    target_entity: str
    action: str
    parameter_schema: dict[str, Any]
    keywords: list[str]
    is_auto_approved: bool
    category: str | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
