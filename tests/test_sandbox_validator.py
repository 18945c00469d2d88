import pytest

from query_sandbox.models import PermissionGrant, PermissionLevel
from query_sandbox.services.sandbox import contains_sql_injection, validate_query, value_matches_type


def test_valid_read_query_passes_strict_mode(db_session, make_sandbox):
    sandbox = make_sandbox()
    result = validate_query(
        db_session,
        sandbox.agent.id,
        "User",
        "findMany",
        {"where": {"isActive": True}, "take": 10, "orderBy": {"createdAt": "desc"}},
        "strict",
    )
    assert result.valid is True
    assert result.errors == []
    assert result.grant_id == sandbox.grant.id
    assert result.schema_map_id == sandbox.schema_map.id
    assert result.requires_approval is False


def test_agent_without_grants_is_refused(db_session, make_sandbox):
    sandbox = make_sandbox()
    sandbox.grant.is_active = False
    db_session.commit()

    result = validate_query(db_session, sandbox.agent.id, "User", "findMany", {})
    assert result.valid is False
    assert result.errors == ["Agent has no permissions"]


def test_entity_outside_grant_is_refused(db_session, make_sandbox):
    sandbox = make_sandbox(allowed_entities=["Agent"])
    result = validate_query(db_session, sandbox.agent.id, "User", "findMany", {})
    assert result.valid is False
    assert "not permitted" in result.errors[0]


def test_read_only_level_blocks_writes_even_when_whitelisted(db_session, make_sandbox):
    sandbox = make_sandbox(
        level=PermissionLevel.READ_ONLY,
        allowed_actions=["findMany", "create"],
    )
    result = validate_query(
        db_session, sandbox.agent.id, "Agent", "create", {"data": {"name": "x"}}
    )
    assert result.valid is False
    assert "READ_ONLY" in result.errors[0]


def test_unknown_field_is_an_error_in_both_modes(db_session, make_sandbox):
    sandbox = make_sandbox()
    params = {"where": {"passwordHash": "abc"}}
    for mode in ("strict", "permissive"):
        result = validate_query(db_session, sandbox.agent.id, "User", "findMany", params, mode)
        assert result.valid is False
        assert any("passwordHash" in error for error in result.errors)


def test_type_mismatch_is_error_in_strict_and_warning_in_permissive(db_session, make_sandbox):
    sandbox = make_sandbox()
    params = {"where": {"isActive": "yes"}, "take": 5}

    strict = validate_query(db_session, sandbox.agent.id, "User", "findMany", params, "strict")
    assert strict.valid is False
    assert "Field isActive should be of type boolean" in strict.errors

    permissive = validate_query(db_session, sandbox.agent.id, "User", "findMany", params, "permissive")
    assert permissive.valid is True
    assert "Field isActive should be of type boolean" in permissive.warnings


def test_permissive_mode_warns_about_missing_and_large_take(db_session, make_sandbox):
    sandbox = make_sandbox()
    missing = validate_query(db_session, sandbox.agent.id, "User", "findMany", {}, "permissive")
    assert missing.valid is True
    assert "Limit (take) parameter is recommended for findMany operations" in missing.warnings

    large = validate_query(
        db_session, sandbox.agent.id, "User", "findMany", {"take": 5000}, "permissive"
    )
    assert large.valid is True
    assert "Take value (5000) exceeds recommended maximum (1000)" in large.warnings

    strict = validate_query(db_session, sandbox.agent.id, "User", "findMany", {}, "strict")
    assert strict.warnings == []


def test_sql_injection_in_nested_string_is_refused(db_session, make_sandbox):
    sandbox = make_sandbox()
    params = {"where": {"OR": [{"username": {"contains": "x' OR '1'='1"}}]}, "take": 1}
    result = validate_query(db_session, sandbox.agent.id, "User", "findMany", params)
    assert result.valid is False
    assert any("SQL injection" in error for error in result.errors)


def test_unsupported_operator_and_param_key(db_session, make_sandbox):
    sandbox = make_sandbox()
    params = {"where": {"username": {"regex": ".*"}}, "include": {"grants": True}}
    result = validate_query(db_session, sandbox.agent.id, "User", "findMany", params)
    assert result.valid is False
    assert "Unsupported query parameter include" in result.errors
    assert any("Unsupported filter operator regex" in error for error in result.errors)


def test_required_fields_for_create(db_session, make_sandbox):
    agent_spec = {
        "allowedActions": ["create"],
        "allowedFields": ["name", "description"],
        "requiredFields": ["name"],
        "fieldTypes": {"name": "string"},
    }
    sandbox = make_sandbox(
        level=PermissionLevel.READ_WRITE,
        allowed_entities=["Agent"],
        allowed_actions=["create"],
        entity_specs={"Agent": agent_spec},
    )
    missing = validate_query(
        db_session, sandbox.agent.id, "Agent", "create", {"data": {"description": "x"}}
    )
    assert missing.valid is False
    assert "Required field name is missing in create data" in missing.errors

    present = validate_query(
        db_session, sandbox.agent.id, "Agent", "create", {"data": {"name": "bot"}}
    )
    assert present.valid is True


def test_data_is_rejected_for_reads_and_take_must_be_non_negative(db_session, make_sandbox):
    sandbox = make_sandbox()
    result = validate_query(
        db_session, sandbox.agent.id, "User", "findMany", {"data": {"username": "x"}, "take": -1}
    )
    assert result.valid is False
    assert "data is not accepted for findMany" in result.errors
    assert "take must be a non-negative integer" in result.errors


def test_validation_does_not_mutate_params(db_session, make_sandbox):
    sandbox = make_sandbox()
    params = {"where": {"isActive": True}}
    validate_query(db_session, sandbox.agent.id, "User", "findMany", params, "permissive")
    assert params == {"where": {"isActive": True}}


def test_any_covering_grant_requiring_approval_wins(db_session, make_sandbox):
    sandbox = make_sandbox(requires_approval=False)
    second = PermissionGrant(
        agent_id=sandbox.agent.id,
        schema_map_id=sandbox.schema_map.id,
        level=PermissionLevel.READ_ONLY,
        allowed_entities=["User"],
        allowed_actions=["count"],
        max_queries_per_day=10,
        requires_approval=True,
    )
    db_session.add(second)
    db_session.commit()

    result = validate_query(db_session, sandbox.agent.id, "User", "findMany", {"take": 1})
    assert result.valid is True
    assert result.grant_id == sandbox.grant.id
    assert result.requires_approval is True


def test_value_type_helpers():
    assert value_matches_type(3, "integer")
    assert not value_matches_type(True, "integer")
    assert value_matches_type("2024-01-31T10:00:00Z", "datetime")
    assert not value_matches_type("yesterday", "date")
    assert value_matches_type(None, "string")
    assert contains_sql_injection("1; /* comment */")
    assert not contains_sql_injection("O'Brien")


WRITABLE_AGENT_SPEC = {
    "allowedActions": ["findMany", "findUnique", "create", "update", "delete"],
    "allowedFields": ["id", "name", "description"],
    "requiredFields": ["name"],
    "fieldTypes": {"id": "integer", "name": "string", "description": "string"},
}


def _writable_sandbox(make_sandbox):
    return make_sandbox(
        level=PermissionLevel.FULL_ACCESS,
        allowed_entities=["Agent"],
        allowed_actions=WRITABLE_AGENT_SPEC["allowedActions"],
        entity_specs={"Agent": WRITABLE_AGENT_SPEC},
    )


@pytest.mark.parametrize("mode", ["strict", "permissive"])
def test_required_fields_are_enforced_in_both_modes(db_session, make_sandbox, mode):
    sandbox = _writable_sandbox(make_sandbox)

    create = validate_query(
        db_session, sandbox.agent.id, "Agent", "create", {"data": {"description": "x"}}, mode
    )
    assert create.valid is False
    assert "Required field name is missing in create data" in create.errors

    lookup = validate_query(
        db_session, sandbox.agent.id, "Agent", "findMany", {"where": {"id": 1}, "take": 5}, mode
    )
    assert lookup.valid is False
    assert "Required field name is missing in where" in lookup.errors

    constrained = validate_query(
        db_session, sandbox.agent.id, "Agent", "findMany", {"where": {"name": "bot"}, "take": 5}, mode
    )
    assert constrained.valid is True


@pytest.mark.parametrize("mode", ["strict", "permissive"])
@pytest.mark.parametrize(
    ("action", "params"),
    [
        ("update", {"data": {"description": "x"}}),
        ("update", {"where": {}, "data": {"description": "x"}}),
        ("delete", {}),
        ("findUnique", {"where": {}}),
    ],
)
def test_single_record_actions_require_where(db_session, make_sandbox, mode, action, params):
    sandbox = _writable_sandbox(make_sandbox)
    result = validate_query(db_session, sandbox.agent.id, "Agent", action, params, mode)
    assert result.valid is False
    assert f"where is required for {action}" in result.errors


@pytest.mark.parametrize("key", ["OR", "AND", "NOT"])
def test_empty_logical_list_is_refused(db_session, make_sandbox, key):
    sandbox = make_sandbox()
    result = validate_query(
        db_session, sandbox.agent.id, "User", "findMany", {"where": {key: []}, "take": 5}, "permissive"
    )
    assert result.valid is False
    assert f"where.{key} must not be empty" in result.errors
