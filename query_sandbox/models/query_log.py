"""Executed query audit entry."""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QueryLog(Base):
    """Append-only record of one query dispatched to the data store."""

    __tablename__ = "query_logs"

    log_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    entity: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    params_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    params_text: Mapped[str] = mapped_column(Text, nullable=False)
    duration_ms: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    is_slow: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    result_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    owner_ids: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
