import pytest


@pytest.mark.anyio("asyncio")
async def test_healthcheck(client):
    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] in {"ok", "degraded"}
    assert payload["db_status"] == "ok"
    assert payload["migrations_status"] in {"up_to_date", "out_of_date", "unknown"}
    assert isinstance(payload["scheduler_config_enabled"], bool)
    assert isinstance(payload["scheduler_running"], bool)
    assert "scheduler_lock" in payload
    assert payload["llm_metrics"].keys() >= {"calls", "errors", "unavailable"}
    assert payload["llm_enabled"] is False
    assert payload["sandbox_default_mode"] in {"strict", "permissive"}
    assert payload["stale_sweep"].keys() == {"at", "rejected"}


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise RuntimeError("DB down")

    monkeypatch.setattr("query_sandbox.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["migrations_status"] == "unknown"
    assert payload["db_ok"] is False
    assert payload["migrations_ok"] is False


@pytest.mark.anyio("asyncio")
async def test_health_reports_last_stale_sweep(client, make_sandbox, make_query_request):
    from query_sandbox.services.cron import reject_stale_requests_once

    make_query_request(make_sandbox())
    assert reject_stale_requests_once() == 0

    payload = (await client.get("/health")).json()
    assert payload["stale_sweep"]["rejected"] == 0
    assert payload["stale_sweep"]["at"] is not None
