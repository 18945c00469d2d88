from __future__ import annotations

from datetime import datetime
import enum

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from query_sandbox.models.base import Base


class ApiScope(str, enum.Enum):
    agent = "agent"
    reviewer = "reviewer"
    admin = "admin"


class ApiKey(Base):
    __tablename__ = "api_keys"

    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    prefix: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    key_hash: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    scope: Mapped[ApiScope] = mapped_column(
        Enum(ApiScope, name="apiscope"), nullable=False, default=ApiScope.agent
    )
    # Agent keys may only act for this agent.
    agent_id: Mapped[int | None] = mapped_column(ForeignKey("agents.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


__all__ = ["ApiKey", "ApiScope"]
