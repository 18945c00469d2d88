"""initial agent query sandbox schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(length=100), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "agents",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("owner_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_agents_owner_id", "agents", ["owner_id"])

    op.create_table(
        "schema_maps",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("version", sa.String(length=20), nullable=False),
        sa.Column("entity_specs", sa.JSON, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False),
        sa.Column("owner_id", sa.Integer, nullable=True),
        sa.Column("org_id", sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_schema_maps_name", "schema_maps", ["name"])
    op.create_index("ix_schema_maps_org_id", "schema_maps", ["org_id"])

    op.create_table(
        "permission_grants",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("agent_id", sa.Integer, sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("schema_map_id", sa.Integer, sa.ForeignKey("schema_maps.id"), nullable=False),
        sa.Column(
            "level",
            sa.Enum("READ_ONLY", "READ_WRITE", "FULL_ACCESS", name="permission_level"),
            nullable=False,
        ),
        sa.Column("allowed_entities", sa.JSON, nullable=False),
        sa.Column("allowed_actions", sa.JSON, nullable=False),
        sa.Column("max_queries_per_day", sa.Integer, nullable=False),
        sa.Column("requires_approval", sa.Boolean, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("max_queries_per_day >= 0", name="ck_permission_grant_quota_non_negative"),
    )
    op.create_index("ix_permission_grants_agent_id", "permission_grants", ["agent_id"])
    op.create_index("ix_permission_grants_schema_map_id", "permission_grants", ["schema_map_id"])

    op.create_table(
        "query_templates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("template_text", sa.Text, nullable=False),
        sa.Column("target_entity", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("parameter_schema", sa.JSON, nullable=False),
        sa.Column("keywords", sa.JSON, nullable=False),
        sa.Column("is_auto_approved", sa.Boolean, nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "query_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("agent_id", sa.Integer, sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("session_id", sa.String(length=128), nullable=True),
        sa.Column("prompt", sa.Text, nullable=False),
        sa.Column("generated_query_text", sa.Text, nullable=False),
        sa.Column("target_entity", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("params", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "AUTO_APPROVED", "APPROVED", "REJECTED", name="query_request_status"),
            nullable=False,
        ),
        sa.Column("sandbox_mode", sa.String(length=16), nullable=False),
        sa.Column("template_id", sa.Integer, nullable=True),
        sa.Column("schema_map_id", sa.Integer, nullable=True),
        sa.Column("validation_warnings", sa.JSON, nullable=False),
        sa.Column("approved_by", sa.String(length=100), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("execution_error", sa.Text, nullable=True),
        sa.Column("audit_log_id", sa.String(length=32), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_query_requests_agent_id", "query_requests", ["agent_id"])
    op.create_index("ix_query_requests_user_id", "query_requests", ["user_id"])
    op.create_index("ix_query_requests_agent_executed", "query_requests", ["agent_id", "executed_at"])
    op.create_index("ix_query_requests_agent_created", "query_requests", ["agent_id", "created_at"])
    op.create_index("ix_query_requests_status_created", "query_requests", ["status", "created_at"])

    op.create_table(
        "query_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("log_id", sa.String(length=32), nullable=False, unique=True),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("params_digest", sa.String(length=64), nullable=False),
        sa.Column("params_text", sa.Text, nullable=False),
        sa.Column("duration_ms", sa.Float, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("is_slow", sa.Boolean, nullable=False),
        sa.Column("result_size", sa.Integer, nullable=False),
        sa.Column("result_preview", sa.Text, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("owner_ids", sa.JSON, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_query_logs_entity", "query_logs", ["entity"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer, nullable=False),
        sa.Column("data_json", sa.JSON, nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_ref", "audit_logs", ["entity", "entity_id"])

    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False, unique=True),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("scope", sa.Enum("agent", "reviewer", "admin", name="apiscope"), nullable=False),
        sa.Column("agent_id", sa.Integer, sa.ForeignKey("agents.id"), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "scheduler_locks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("scheduler_locks")
    op.drop_table("api_keys")
    op.drop_index("ix_audit_logs_entity_ref", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_query_logs_entity", table_name="query_logs")
    op.drop_table("query_logs")
    op.drop_index("ix_query_requests_status_created", table_name="query_requests")
    op.drop_index("ix_query_requests_agent_created", table_name="query_requests")
    op.drop_index("ix_query_requests_agent_executed", table_name="query_requests")
    op.drop_index("ix_query_requests_user_id", table_name="query_requests")
    op.drop_index("ix_query_requests_agent_id", table_name="query_requests")
    op.drop_table("query_requests")
    op.drop_table("query_templates")
    op.drop_index("ix_permission_grants_schema_map_id", table_name="permission_grants")
    op.drop_index("ix_permission_grants_agent_id", table_name="permission_grants")
    op.drop_table("permission_grants")
    op.drop_index("ix_schema_maps_org_id", table_name="schema_maps")
    op.drop_index("ix_schema_maps_name", table_name="schema_maps")
    op.drop_table("schema_maps")
    op.drop_index("ix_agents_owner_id", table_name="agents")
    op.drop_table("agents")
    op.drop_table("users")
