"""Schema map model."""
from sqlalchemy import Boolean, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class SchemaMap(Base):
    """Declarative whitelist of the entities, actions and fields agents may touch.

    ``entity_specs`` maps an entity name to a dict with ``allowedActions``,
    ``allowedFields``, ``requiredFields``, ``fieldTypes`` and optionally
    ``redactedFields``. Entities absent from the mapping are forbidden.
    """

    __tablename__ = "schema_maps"

    name: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0.0")
    entity_specs: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    owner_id: Mapped[int | None] = mapped_column(nullable=True)
    org_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    grants = relationship("PermissionGrant", back_populates="schema_map")

    def entity_spec(self, entity: str) -> dict | None:
        """Return the spec for ``entity`` or ``None`` when it is not whitelisted."""

        specs = self.entity_specs or {}
        spec = specs.get(entity)
        return spec if isinstance(spec, dict) else None
