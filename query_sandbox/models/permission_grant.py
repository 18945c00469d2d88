"""Agent permission grant model."""
from __future__ import annotations

from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Enum as SqlEnum, ForeignKey, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PermissionLevel(str, Enum):
    """How much an agent may change through a grant."""

    READ_ONLY = "READ_ONLY"
    READ_WRITE = "READ_WRITE"
    FULL_ACCESS = "FULL_ACCESS"


DEFAULT_ALLOWED_ACTIONS = ["findMany", "findUnique", "findFirst", "count"]


class PermissionGrant(Base):
    """Binds an agent to a schema map with a level, whitelists and a daily quota."""

    __tablename__ = "permission_grants"
    __table_args__ = (
        CheckConstraint("max_queries_per_day >= 0", name="ck_permission_grant_quota_non_negative"),
    )

    agent_id: Mapped[int] = mapped_column(ForeignKey("agents.id"), nullable=False, index=True)
    schema_map_id: Mapped[int] = mapped_column(ForeignKey("schema_maps.id"), nullable=False, index=True)
    level: Mapped[PermissionLevel] = mapped_column(
        SqlEnum(PermissionLevel, name="permission_level"),
        nullable=False,
        default=PermissionLevel.READ_ONLY,
    )
    allowed_entities: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    allowed_actions: Mapped[list] = mapped_column(
        JSON, nullable=False, default=lambda: list(DEFAULT_ALLOWED_ACTIONS)
    )
    max_queries_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    agent = relationship("Agent", back_populates="grants")
    schema_map = relationship("SchemaMap", back_populates="grants")
