"""Query template model."""
from sqlalchemy import Boolean, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QueryTemplate(Base):
    """Pre-vetted, parameterised query that bypasses free-form generation."""

    __tablename__ = "query_templates"

    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    template_text: Mapped[str] = mapped_column(Text, nullable=False)
    target_entity: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    parameter_schema: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_auto_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
