import pytest

from query_sandbox.models import User
from query_sandbox.services.repositories import RepositoryError, build_default_registry


@pytest.fixture
def users(db_session):
    rows = [
        User(username="alice", email="alice@example.com", is_active=True),
        User(username="bob", email="bob@example.com", is_active=False),
        User(username="carol", email="carol@example.org", is_active=True),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


def _users_repo():
    return build_default_registry().resolve("User", "findMany")


def test_find_many_with_filters_order_and_select(db_session, users):
    rows = _users_repo().run(
        db_session,
        "findMany",
        {
            "where": {"isActive": True, "email": {"endsWith": "example.com"}},
            "orderBy": {"username": "desc"},
            "select": {"username": True},
        },
    )
    assert rows == [{"username": "alice"}]


def test_logical_operators(db_session, users):
    repo = _users_repo()
    either = repo.run(
        db_session,
        "findMany",
        {"where": {"OR": [{"username": "alice"}, {"username": "bob"}]}, "select": {"username": True}},
    )
    assert [row["username"] for row in either] == ["alice", "bob"]

    negated = repo.run(
        db_session,
        "findMany",
        {"where": {"NOT": {"username": {"in": ["alice", "bob"]}}}, "select": {"username": True}},
    )
    assert negated == [{"username": "carol"}]


def test_skip_take_and_count(db_session, users):
    repo = _users_repo()
    page = repo.run(db_session, "findMany", {"skip": 1, "take": 1, "select": {"username": True}})
    assert page == [{"username": "bob"}]
    assert repo.run(db_session, "count", {"where": {"isActive": False}}) == 1


def test_distinct_is_applied_before_paging(db_session, users):
    rows = _users_repo().run(
        db_session, "findMany", {"distinct": ["isActive"], "select": {"isActive": True}}
    )
    assert rows == [{"isActive": True}, {"isActive": False}]


def test_find_first_returns_none_when_missing(db_session, users):
    repo = _users_repo()
    assert repo.run(db_session, "findFirst", {"where": {"username": "zed"}}) is None
    row = repo.run(db_session, "findUnique", {"where": {"username": "bob"}})
    assert row["isActive"] is False
    assert row["createdAt"].endswith("+00:00")


def test_writes_and_bulk_updates(db_session, users):
    repo = build_default_registry().resolve("Agent", "create")
    created = repo.run(db_session, "create", {"data": {"name": "helper", "isActive": True}})
    assert created["name"] == "helper"

    updated = repo.run(
        db_session, "update", {"where": {"name": "helper"}, "data": {"description": "updated"}}
    )
    assert updated["description"] == "updated"

    result = repo.run(db_session, "updateMany", {"where": {"isActive": True}, "data": {"isActive": False}})
    assert result == {"count": 1}
    db_session.rollback()


def test_unknown_field_and_entity_fail_closed(db_session, users):
    registry = build_default_registry()
    with pytest.raises(RepositoryError):
        registry.resolve("Invoice", "findMany")
    with pytest.raises(RepositoryError):
        registry.resolve("User", "findMany").run(db_session, "findMany", {"where": {"secret": 1}})
    with pytest.raises(RepositoryError):
        registry.resolve("User", "update").run(
            db_session, "update", {"where": {"username": "nobody"}, "data": {"isActive": True}}
        )


def test_describe_reports_types_and_required_fields():
    repo = build_default_registry().get("User")
    fields = {field.name: field for field in repo.describe()}
    assert fields["isActive"].type == "boolean"
    assert fields["createdAt"].type == "datetime"
    assert fields["username"].required is True
    assert fields["isActive"].required is False
    assert fields["id"].required is False


@pytest.mark.parametrize(
    ("action", "params"),
    [
        ("update", {"data": {"isActive": False}}),
        ("update", {"where": {}, "data": {"isActive": False}}),
        ("delete", {}),
        ("delete", {"where": {"NOT": []}}),
        ("findUnique", {}),
    ],
)
def test_single_record_actions_without_where_touch_nothing(db_session, users, action, params):
    repo = _users_repo()
    with pytest.raises(RepositoryError, match="requires a where filter"):
        repo.run(db_session, action, params)
    db_session.rollback()

    remaining = repo.run(db_session, "findMany", {"select": {"username": True, "isActive": True}})
    assert remaining == [
        {"username": "alice", "isActive": True},
        {"username": "bob", "isActive": False},
        {"username": "carol", "isActive": True},
    ]


def test_empty_or_matches_nothing_and_empty_and_matches_everything(db_session, users):
    repo = _users_repo()
    assert repo.run(db_session, "findMany", {"where": {"OR": []}}) == []
    assert repo.run(db_session, "count", {"where": {"OR": []}}) == 0
    assert repo.run(db_session, "count", {"where": {"AND": []}}) == 3
    assert repo.run(db_session, "count", {"where": {"NOT": []}}) == 3
    assert repo.run(db_session, "count", {"where": {"OR": [], "isActive": True}}) == 0
