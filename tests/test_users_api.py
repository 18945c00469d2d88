import pytest
from uuid import uuid4
from sqlalchemy import select

from query_sandbox.models.audit import AuditLog


@pytest.mark.anyio("asyncio")
async def test_user_creation_audit_has_api_actor(client, admin_headers, db_session):
    payload = {
        "username": f"audit-user-{uuid4().hex[:6]}",
        "email": f"audit-user-{uuid4().hex[:6]}@example.com",
    }
    resp = await client.post("/users", json=payload, headers=admin_headers)
    assert resp.status_code == 201

    db_session.expire_all()
    audit = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "CREATE_USER").order_by(AuditLog.id.desc())
    ).first()
    assert audit is not None
    assert audit.actor.startswith("apikey:")


@pytest.mark.anyio("asyncio")
async def test_agent_requires_existing_owner(client, admin_headers):
    resp = await client.post("/agents", json={"name": "orphan", "owner_id": 999999}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "USER_NOT_FOUND"

    missing = await client.get("/agents/999999", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "AGENT_NOT_FOUND"


@pytest.mark.anyio("asyncio")
async def test_grant_lifecycle(client, admin_headers, make_sandbox, db_session):
    sandbox = make_sandbox()
    created = await client.post(
        "/permission-grants",
        json={
            "agent_id": sandbox.agent.id,
            "schema_map_id": sandbox.schema_map.id,
            "level": "READ_WRITE",
            "allowed_entities": ["Agent"],
            "allowed_actions": ["findMany", "update"],
            "max_queries_per_day": 5,
        },
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    grant = created.json()
    assert grant["requires_approval"] is True
    assert grant["is_active"] is True

    listing = await client.get(
        "/permission-grants", params={"agent_id": sandbox.agent.id}, headers=admin_headers
    )
    assert [item["id"] for item in listing.json()] == [sandbox.grant.id, grant["id"]]

    updated = await client.patch(
        f"/permission-grants/{grant['id']}", json={"max_queries_per_day": 10}, headers=admin_headers
    )
    assert updated.status_code == 200
    assert updated.json()["max_queries_per_day"] == 10

    revoked = await client.delete(f"/permission-grants/{grant['id']}", headers=admin_headers)
    assert revoked.status_code == 200
    assert revoked.json()["is_active"] is False

    active = await client.get(
        "/permission-grants",
        params={"agent_id": sandbox.agent.id, "active_only": True},
        headers=admin_headers,
    )
    assert [item["id"] for item in active.json()] == [sandbox.grant.id]

    actions = set(
        db_session.scalars(select(AuditLog.action).where(AuditLog.entity == "PermissionGrant")).all()
    )
    assert {"PERMISSION_GRANT_CREATED", "PERMISSION_GRANT_UPDATED", "PERMISSION_GRANT_DEACTIVATED"} <= actions


@pytest.mark.anyio("asyncio")
async def test_grant_rejects_unknown_action(client, admin_headers, make_sandbox):
    sandbox = make_sandbox()
    resp = await client.post(
        "/permission-grants",
        json={
            "agent_id": sandbox.agent.id,
            "schema_map_id": sandbox.schema_map.id,
            "allowed_actions": ["dropTable"],
        },
        headers=admin_headers,
    )
    assert resp.status_code == 422
