import pytest

from query_sandbox.services.templates import TemplateRenderError, placeholders, render_template

TEMPLATE_BODY = {
    "name": "users-by-state",
    "template_text": '{"where": {"isActive": {{active}}}, "take": {{limit}}}',
    "target_entity": "User",
    "action": "findMany",
    "parameter_schema": {
        "properties": {
            "active": {"type": "boolean"},
            "limit": {"type": "integer", "default": 10},
        }
    },
    "keywords": ["users"],
}


def test_render_template_substitutes_json_values():
    params = render_template(TEMPLATE_BODY["template_text"], {"active": False, "limit": 5})
    assert params == {"where": {"isActive": False}, "take": 5}
    assert placeholders(TEMPLATE_BODY["template_text"]) == {"active", "limit"}


def test_render_template_quotes_strings():
    params = render_template('{"where": {"username": {{name}}}}', {"name": 'bob" OR 1=1'})
    assert params == {"where": {"username": 'bob" OR 1=1'}}


def test_render_template_errors():
    with pytest.raises(TemplateRenderError):
        render_template('{"take": {{limit}}}', {})
    with pytest.raises(TemplateRenderError):
        render_template("[{{limit}}]", {"limit": 1})


@pytest.mark.anyio
async def test_template_crud_and_duplicate_name(client, admin_headers, agent_headers):
    created = await client.post("/query-templates", json=TEMPLATE_BODY, headers=admin_headers)
    assert created.status_code == 201, created.text
    template_id = created.json()["id"]

    duplicate = await client.post("/query-templates", json=TEMPLATE_BODY, headers=admin_headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "QUERY_TEMPLATE_EXISTS"

    forbidden = await client.get("/query-templates", headers=agent_headers)
    assert forbidden.status_code == 403

    fetched = await client.get(f"/query-templates/{template_id}", headers=admin_headers)
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "users-by-state"

    missing = await client.get("/query-templates/999999", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "QUERY_TEMPLATE_NOT_FOUND"


@pytest.mark.anyio
async def test_template_with_undeclared_placeholder_is_rejected(client, admin_headers):
    body = dict(TEMPLATE_BODY, name="broken", parameter_schema={"properties": {"limit": {"type": "integer"}}})
    response = await client.post("/query-templates", json=body, headers=admin_headers)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "TEMPLATE_INVALID"
