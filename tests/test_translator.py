from datetime import UTC, datetime

import pytest

from query_sandbox.models import PermissionGrant, PermissionLevel, QueryTemplate, SchemaMap
from query_sandbox.schemas.query_request import QueryOptions
from query_sandbox.services.translator import (
    build_system_prompt,
    extract_json_object,
    extract_parameter,
    format_query_text,
    match_template,
    parse_generated_query,
    translate,
)
from query_sandbox.utils.errors import TranslationError

from conftest import FakeCompletionProvider, USER_SPEC

NOW = datetime(2024, 5, 10, 15, 30, tzinfo=UTC)


def _schema_map() -> SchemaMap:
    return SchemaMap(id=1, name="support", description="Support data", entity_specs={"User": USER_SPEC}, is_active=True)


def _grant(schema_map: SchemaMap) -> PermissionGrant:
    return PermissionGrant(
        id=1,
        agent_id=1,
        schema_map_id=schema_map.id,
        schema_map=schema_map,
        level=PermissionLevel.READ_ONLY,
        allowed_entities=["User"],
        allowed_actions=["findMany", "count"],
        max_queries_per_day=10,
        requires_approval=False,
        is_active=True,
    )


def _template(template_id: int, keywords: list[str], **overrides) -> QueryTemplate:
    values = dict(
        id=template_id,
        name=f"template-{template_id}",
        template_text='{"where": {"isActive": true}, "take": {{limit}}}',
        target_entity="User",
        action="findMany",
        parameter_schema={"properties": {"limit": {"type": "integer", "default": 20}}},
        keywords=keywords,
        is_auto_approved=True,
        is_active=True,
    )
    values.update(overrides)
    return QueryTemplate(**values)


def test_extract_json_object_skips_prose_and_braces_in_strings():
    text = 'Sure! Here you go:\n```json\n{"targetModel": "User", "params": {"where": {"username": "a}b"}}}\n```'
    assert extract_json_object(text) == '{"targetModel": "User", "params": {"where": {"username": "a}b"}}}'
    assert extract_json_object("no json here") is None


@pytest.mark.parametrize(
    ("prompt", "spec", "expected"),
    [
        ("show the last 15 users", {"type": "integer"}, 15),
        ("users created on 2024-01-31", {"type": "date"}, "2024-01-31"),
        ("who signed up yesterday", {"type": "date"}, "2024-05-09T00:00:00+00:00"),
        ("agent #abc-12", {"type": "identifier"}, "abc-12"),
        ("status pending or active", {"type": "enum", "options": ["active", "pending"]}, "pending"),
        ("users named 'alice'", {"type": "string"}, "alice"),
        ("order number 42", {"type": "string", "pattern": r"order number (\d+)"}, "42"),
        ("nothing useful", {"type": "integer"}, None),
    ],
)
def test_extract_parameter(prompt, spec, expected):
    assert extract_parameter(prompt, spec, now=NOW) == expected


def test_extract_date_range_from_relative_window():
    value = extract_parameter("errors in the last 7 days", {"type": "date_range"}, now=NOW)
    assert value["lte"] == NOW.isoformat()
    assert value["gte"].startswith("2024-05-03")


def test_match_template_prefers_most_keywords_then_lowest_id():
    schema_map = _schema_map()
    grants = [_grant(schema_map)]
    generic = _template(1, ["users"])
    specific = _template(2, ["active", "users"])
    duplicate = _template(3, ["active", "users"])

    matched = match_template("List active users", [duplicate, generic, specific], grants, now=NOW)
    assert matched is not None
    template, values = matched
    assert template.id == 2
    assert values == {"limit": 20}


def test_match_template_ignores_templates_outside_grants():
    schema_map = _schema_map()
    grants = [_grant(schema_map)]
    forbidden = _template(1, ["users"], action="deleteMany")
    assert match_template("delete users", [forbidden], grants, now=NOW) is None


def test_translate_uses_template_before_model():
    schema_map = _schema_map()
    provider = FakeCompletionProvider()
    result = translate(
        "show 5 active users",
        [schema_map],
        QueryOptions(),
        grants=[_grant(schema_map)],
        templates=[_template(7, ["active", "users"])],
        provider=provider,
        now=NOW,
    )
    assert result.strategy == "template"
    assert result.template_id == 7
    assert result.params == {"where": {"isActive": True}, "take": 5}
    assert result.generated_query_text == 'User.findMany({"take":5,"where":{"isActive":true}})'
    assert provider.calls == []


def test_translate_falls_back_to_model_with_schema_in_system_prompt():
    schema_map = _schema_map()
    provider = FakeCompletionProvider()
    provider.respond_with(
        'Here is the query: {"targetModel": "User", "action": "count", "params": {"where": {"isActive": false}}}'
    )
    result = translate(
        "How many inactive accounts are there?",
        [schema_map],
        QueryOptions(use_templates=False, temperature=0.1),
        grants=[_grant(schema_map)],
        templates=[],
        provider=provider,
    )
    assert result.strategy == "generative"
    assert result.target_entity == "User"
    assert result.action == "count"
    assert result.params == {"where": {"isActive": False}}
    call = provider.calls[0]
    assert "Model: User" in call["system_prompt"]
    assert call["user_prompt"] == "How many inactive accounts are there?"
    assert call["temperature"] == 0.1


def test_translate_fails_closed_when_model_unavailable():
    schema_map = _schema_map()
    provider = FakeCompletionProvider()
    provider.unavailable = True
    with pytest.raises(TranslationError) as exc_info:
        translate(
            "anything",
            [schema_map],
            QueryOptions(),
            grants=[_grant(schema_map)],
            templates=[],
            provider=provider,
        )
    assert "unavailable" in exc_info.value.message


def test_parse_generated_query_rejects_unknown_entity_and_action():
    schema_map = _schema_map()
    with pytest.raises(TranslationError):
        parse_generated_query('{"targetModel": "Invoice", "action": "findMany", "params": {}}', [schema_map])
    with pytest.raises(TranslationError):
        parse_generated_query('{"targetModel": "User", "action": "deleteMany", "params": {}}', [schema_map])
    with pytest.raises(TranslationError):
        parse_generated_query('{"targetModel": "User", "action": "findMany", "params": []}', [schema_map])


def test_format_and_system_prompt_helpers():
    assert format_query_text("User", "count", {"b": 1, "a": 2}) == 'User.count({"a":2,"b":1})'
    prompt = build_system_prompt([_schema_map()])
    assert "Schema Map: support (Support data)" in prompt
    assert "Allowed Fields: id, username, email, isActive, createdAt" in prompt
