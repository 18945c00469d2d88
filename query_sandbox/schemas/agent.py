"""Agent schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AgentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    owner_id: int | None = Field(default=None, gt=0)
    is_active: bool = True


class AgentRead(BaseModel):
    id: int
    name: str
    description: str | None = None
    owner_id: int | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
