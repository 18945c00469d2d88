"""End-to-end prompt submission, approval and execution over HTTP."""
import pytest
from sqlalchemy import select

from query_sandbox.config import settings
from query_sandbox.models import AuditLog, QueryLog, QueryRequest, QueryRequestStatus


def _submission(sandbox, prompt: str, **options) -> dict:
    return {
        "agent_id": sandbox.agent.id,
        "user_id": sandbox.user.id,
        "session_id": "session-1",
        "prompt": prompt,
        "options": options,
    }


@pytest.mark.anyio
async def test_prompt_is_translated_validated_and_executed(client, make_sandbox, fake_provider, db_session):
    sandbox = make_sandbox(requires_approval=False)
    fake_provider.respond_with(
        {"targetModel": "User", "action": "findMany", "params": {"where": {"isActive": True}, "take": 10}}
    )

    response = await client.post(
        "/agent-queries", json=_submission(sandbox, "Find all active users"), headers=sandbox.headers
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "AUTO_APPROVED"
    assert body["requires_approval"] is False
    assert body["generated_query_text"] == 'User.findMany({"take":10,"where":{"isActive":true}})'
    execution = body["execution"]
    assert execution["success"] is True
    assert isinstance(execution["result"], list)
    assert execution["result"][0]["email"] == "[REDACTED]"

    log = db_session.scalars(select(QueryLog).where(QueryLog.log_id == execution["audit_log_id"])).one()
    assert log.status == "success"

    stored = db_session.get(QueryRequest, body["query_request_id"])
    assert stored.session_id == "session-1"
    assert stored.executed_at is not None


@pytest.mark.anyio
async def test_grant_requiring_approval_keeps_request_pending(
    client, reviewer_headers, make_sandbox, fake_provider, monkeypatch
):
    monkeypatch.setattr(settings, "EXECUTE_ON_APPROVAL", False)
    sandbox = make_sandbox(requires_approval=True)
    fake_provider.respond_with({"targetModel": "User", "action": "count", "params": {}})

    submitted = await client.post(
        "/agent-queries", json=_submission(sandbox, "How many users?"), headers=sandbox.headers
    )
    assert submitted.status_code == 201, submitted.text
    body = submitted.json()
    assert body["status"] == "PENDING"
    assert body["requires_approval"] is True
    assert body["execution"] is None
    request_id = body["query_request_id"]

    early = await client.post(f"/query-requests/{request_id}/execute", headers=sandbox.headers)
    assert early.status_code == 409
    assert early.json()["error"]["code"] == "QUERY_NOT_APPROVED"

    forbidden = await client.post(
        f"/query-requests/{request_id}/decision", json={"approved": True}, headers=sandbox.headers
    )
    assert forbidden.status_code == 403

    decided = await client.post(
        f"/query-requests/{request_id}/decision", json={"approved": True}, headers=reviewer_headers
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "APPROVED"

    executed = await client.post(f"/query-requests/{request_id}/execute", headers=reviewer_headers)
    assert executed.status_code == 200
    assert executed.json()["success"] is True
    assert executed.json()["result"] == 1

    repeated = await client.post(f"/query-requests/{request_id}/execute", headers=reviewer_headers)
    assert repeated.status_code == 200
    assert repeated.json()["already_executed"] is True
    assert repeated.json()["result"] == 1


@pytest.mark.anyio
async def test_rejected_request_cannot_execute(client, reviewer_headers, make_sandbox, fake_provider):
    sandbox = make_sandbox(requires_approval=True)
    fake_provider.respond_with({"targetModel": "User", "action": "count", "params": {}})
    submitted = await client.post(
        "/agent-queries", json=_submission(sandbox, "How many users?"), headers=sandbox.headers
    )
    request_id = submitted.json()["query_request_id"]

    rejected = await client.post(
        f"/query-requests/{request_id}/decision",
        json={"approved": False, "rejection_reason": "Not needed"},
        headers=reviewer_headers,
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "REJECTED"
    assert rejected.json()["rejection_reason"] == "Not needed"

    execute = await client.post(f"/query-requests/{request_id}/execute", headers=reviewer_headers)
    assert execute.status_code == 409


@pytest.mark.anyio
async def test_invalid_generated_query_is_refused_and_audited(client, make_sandbox, fake_provider, db_session):
    sandbox = make_sandbox()
    fake_provider.respond_with(
        {"targetModel": "User", "action": "findMany", "params": {"where": {"passwordHash": "x"}}}
    )

    response = await client.post(
        "/agent-queries", json=_submission(sandbox, "show password hashes"), headers=sandbox.headers
    )
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "QUERY_VALIDATION_FAILED"
    assert any("passwordHash" in message for message in error["details"]["errors"])

    assert db_session.scalars(select(QueryRequest)).first() is None
    audit = db_session.scalars(select(AuditLog).where(AuditLog.action == "QUERY_VALIDATION_FAILED")).first()
    assert audit is not None
    assert audit.entity_id == sandbox.agent.id


@pytest.mark.anyio
async def test_translation_failure_returns_422(client, make_sandbox, fake_provider):
    sandbox = make_sandbox()
    fake_provider.unavailable = True

    response = await client.post(
        "/agent-queries", json=_submission(sandbox, "anything at all"), headers=sandbox.headers
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "TRANSLATION_FAILED"


@pytest.mark.anyio
async def test_exhausted_quota_returns_429(client, make_sandbox, fake_provider):
    sandbox = make_sandbox(max_queries_per_day=0)
    fake_provider.respond_with({"targetModel": "User", "action": "count", "params": {}})

    response = await client.post(
        "/agent-queries", json=_submission(sandbox, "How many users?"), headers=sandbox.headers
    )
    assert response.status_code == 429
    details = response.json()["error"]["details"]
    assert details == {"used": 0, "limit": 0, "remaining": 0}


@pytest.mark.anyio
async def test_template_match_skips_the_model(client, admin_headers, make_sandbox, fake_provider):
    sandbox = make_sandbox()
    created = await client.post(
        "/query-templates",
        json={
            "name": "active-users",
            "template_text": '{"where": {"isActive": true}, "take": {{limit}}}',
            "target_entity": "User",
            "action": "findMany",
            "parameter_schema": {"properties": {"limit": {"type": "integer", "default": 25}}},
            "keywords": ["Active", "users"],
            "is_auto_approved": True,
        },
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    assert created.json()["keywords"] == ["active", "users"]

    response = await client.post(
        "/agent-queries", json=_submission(sandbox, "list 3 active users"), headers=sandbox.headers
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["generated_query_text"] == 'User.findMany({"take":3,"where":{"isActive":true}})'
    assert body["status"] == "AUTO_APPROVED"
    assert fake_provider.calls == []


@pytest.mark.anyio
async def test_validate_endpoint_and_listing(client, reviewer_headers, make_sandbox, make_query_request):
    sandbox = make_sandbox()
    response = await client.post(
        "/query-requests/validate",
        json={
            "agent_id": sandbox.agent.id,
            "target_entity": "User",
            "action": "findMany",
            "params": {},
            "sandbox_mode": "permissive",
        },
        headers=sandbox.headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["warnings"] == ["Limit (take) parameter is recommended for findMany operations"]

    for _ in range(3):
        make_query_request(sandbox, status=QueryRequestStatus.PENDING)
    make_query_request(sandbox, status=QueryRequestStatus.REJECTED)

    page = await client.get(
        "/query-requests",
        params={"agent_id": sandbox.agent.id, "status": "PENDING", "limit": 2},
        headers=reviewer_headers,
    )
    assert page.status_code == 200
    payload = page.json()
    assert payload["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert len(payload["items"]) == 2
    assert all(item["status"] == "PENDING" for item in payload["items"])


@pytest.mark.anyio
async def test_query_log_lookup(client, reviewer_headers, make_sandbox, make_query_request):
    sandbox = make_sandbox()
    request = make_query_request(sandbox)
    executed = await client.post(f"/query-requests/{request.id}/execute", headers=sandbox.headers)
    assert executed.status_code == 200
    log_id = executed.json()["audit_log_id"]

    found = await client.get(f"/query-logs/{log_id}", headers=reviewer_headers)
    assert found.status_code == 200
    assert found.json()["status"] == "success"
    assert found.json()["owner_ids"]["query_request_id"] == request.id

    missing = await client.get("/query-logs/does-not-exist", headers=reviewer_headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "QUERY_LOG_NOT_FOUND"
