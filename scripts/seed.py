"""Seed sample data for a local agent query sandbox."""
from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

from query_sandbox import db, models
from query_sandbox.config import get_settings
from query_sandbox.schemas.permission_grant import PermissionGrantCreate
from query_sandbox.schemas.query_template import QueryTemplateCreate
from query_sandbox.schemas.schema_map import SchemaMapCreate
from query_sandbox.services.permissions import create_grant
from query_sandbox.services.repositories import build_default_registry
from query_sandbox.services.schema_maps import create_schema_map, generate_entity_specs
from query_sandbox.services.templates import create_template


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    db.init_engine()
    db.create_all()
    session = db.get_sessionmaker()()

    try:
        alice = models.User(username="alice", email="alice@example.com")
        bob = models.User(username="bob", email="bob@example.com", is_active=False)
        session.add_all([alice, bob])
        session.commit()

        agent = models.Agent(name="support-assistant", description="Answers account questions", owner_id=alice.id)
        session.add(agent)
        session.commit()

        registry = build_default_registry()
        schema_map = create_schema_map(
            session,
            SchemaMapCreate(
                name="Support read model",
                description="Read-only view of users and agents",
                entity_specs=generate_entity_specs(registry),
            ),
            actor="seed",
        )
        create_grant(
            session,
            PermissionGrantCreate(
                agent_id=agent.id,
                schema_map_id=schema_map.id,
                allowed_entities=["User", "Agent"],
                max_queries_per_day=50,
                requires_approval=False,
            ),
            actor="seed",
        )
        create_template(
            session,
            QueryTemplateCreate(
                name="recent-users",
                description="Most recently created users",
                template_text='{"orderBy": {"createdAt": "desc"}, "take": {{limit}}}',
                target_entity="User",
                action="findMany",
                parameter_schema={"properties": {"limit": {"type": "integer", "default": 10}}},
                keywords=["recent", "users"],
                is_auto_approved=True,
                category="users",
            ),
            actor="seed",
        )

        print("Seed complete")
        print(f"Agent id={agent.id} user id={alice.id} schema map id={schema_map.id}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
