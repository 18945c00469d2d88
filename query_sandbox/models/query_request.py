"""Agent query request model."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QueryRequestStatus(str, Enum):
    """Approval lifecycle of a query request."""

    PENDING = "PENDING"
    AUTO_APPROVED = "AUTO_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


APPROVED_STATUSES = (QueryRequestStatus.APPROVED, QueryRequestStatus.AUTO_APPROVED)


class QueryRequest(Base):
    """One natural-language prompt turned into a structured query.

    Rows are compliance records and are never deleted.
    """

    __tablename__ = "query_requests"
    __table_args__ = (
        Index("ix_query_requests_agent_executed", "agent_id", "executed_at"),
        Index("ix_query_requests_agent_created", "agent_id", "created_at"),
        Index("ix_query_requests_status_created", "status", "created_at"),
    )

    agent_id: Mapped[int] = mapped_column(ForeignKey("agents.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    generated_query_text: Mapped[str] = mapped_column(Text, nullable=False)
    target_entity: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    params: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[QueryRequestStatus] = mapped_column(
        SqlEnum(QueryRequestStatus, name="query_request_status"),
        nullable=False,
        default=QueryRequestStatus.PENDING,
    )
    sandbox_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="strict")
    template_id: Mapped[int | None] = mapped_column(nullable=True)
    # Resolved at validation time; several grants may apply so no hard FK.
    schema_map_id: Mapped[int | None] = mapped_column(nullable=True)
    validation_warnings: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    result: Mapped[Any] = mapped_column(JSON, nullable=True)
    execution_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    audit_log_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    @property
    def is_terminal(self) -> bool:
        """True once the request can no longer change."""

        return (
            self.status == QueryRequestStatus.REJECTED
            or self.executed_at is not None
            or self.execution_error is not None
        )
