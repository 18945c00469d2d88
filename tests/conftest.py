"""Test configuration."""
import json
import os
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from types import SimpleNamespace
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

# --- Default env before the package reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./query_sandbox_test.db")
os.environ.setdefault("API_KEY", "test-secret-key")
os.environ.setdefault("QS_ENV", "dev")

from query_sandbox import db  # noqa: E402
from query_sandbox.main import app  # noqa: E402
from query_sandbox.models import (  # noqa: E402
    Agent,
    Base,
    PermissionGrant,
    PermissionLevel,
    QueryRequest,
    QueryRequestStatus,
    SchemaMap,
    User,
)
from query_sandbox.models.api_key import ApiKey, ApiScope  # noqa: E402
from query_sandbox.services.completion import CompletionUnavailable, get_completion_provider  # noqa: E402
from query_sandbox.services.repositories import build_default_registry, get_repository_registry  # noqa: E402
from query_sandbox.utils.apikey import hash_key  # noqa: E402

DB_PATH = Path("./query_sandbox_test.db")

USER_SPEC = {
    "allowedActions": ["findMany", "findFirst", "findUnique", "count"],
    "allowedFields": ["id", "username", "email", "isActive", "createdAt"],
    "fieldTypes": {
        "id": "integer",
        "username": "string",
        "email": "string",
        "isActive": "boolean",
        "createdAt": "datetime",
    },
    "redactedFields": ["email"],
}

AGENT_SPEC = {
    "allowedActions": ["findMany", "count", "create", "update"],
    "allowedFields": ["id", "name", "description", "isActive"],
    "requiredFields": [],
    "fieldTypes": {"id": "integer", "name": "string", "description": "string", "isActive": "boolean"},
}


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("script_location", str(Path(__file__).resolve().parents[1] / "alembic"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Reset the DB file at the start of the session
if DB_PATH.exists():
    DB_PATH.unlink()

# --- (2) Build the schema through Alembic only
_run_migrations()
db.init_engine()


@pytest.fixture(autouse=True)
def clean_tables() -> Iterator[None]:
    yield
    with db.get_engine().begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture
def db_session() -> Iterator[Session]:
    session = db.get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()


class FakeCompletionProvider:
    """Returns canned model output and records the prompts it was given."""

    def __init__(self) -> None:
        self.responses: list[str] = []
        self.calls: list[dict] = []
        self.unavailable = False

    def respond_with(self, payload: dict | str) -> None:
        self.responses.append(payload if isinstance(payload, str) else json.dumps(payload))

    def complete(self, system_prompt, user_prompt, *, max_tokens, temperature):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.unavailable or not self.responses:
            raise CompletionUnavailable("fake provider has nothing to say")
        return self.responses.pop(0)


@pytest.fixture
def fake_provider() -> FakeCompletionProvider:
    return FakeCompletionProvider()


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture(autouse=True)
def override_dependencies(fake_provider, registry) -> Iterator[None]:
    app.dependency_overrides[get_completion_provider] = lambda: fake_provider
    app.dependency_overrides[get_repository_registry] = lambda: registry
    yield
    app.dependency_overrides.pop(get_completion_provider, None)
    app.dependency_overrides.pop(get_repository_registry, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., ApiKey]:
    def _factory(
        name: str,
        key: str,
        scope: ApiScope = ApiScope.agent,
        is_active: bool = True,
        agent_id: int | None = None,
    ) -> ApiKey:
        api_key = ApiKey(
            name=name,
            prefix=f"t{uuid4().hex[:10]}",
            key_hash=hash_key(key),
            scope=scope,
            agent_id=agent_id,
            is_active=is_active,
        )
        db_session.add(api_key)
        db_session.commit()
        db_session.refresh(api_key)
        return api_key

    return _factory


def _headers_for(make_api_key: Callable[..., ApiKey], scope: ApiScope) -> dict[str, str]:
    token = f"{scope.value}-{uuid4().hex}"
    make_api_key(name=f"{scope.value}-{uuid4().hex}", key=token, scope=scope)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def agent_headers(make_api_key) -> dict[str, str]:
    return _headers_for(make_api_key, ApiScope.agent)


@pytest.fixture
def reviewer_headers(make_api_key) -> dict[str, str]:
    return _headers_for(make_api_key, ApiScope.reviewer)


@pytest.fixture
def admin_headers(make_api_key) -> dict[str, str]:
    return _headers_for(make_api_key, ApiScope.admin)


@pytest.fixture
def legacy_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['API_KEY']}"}


@pytest.fixture
def make_sandbox(db_session: Session, make_api_key) -> Callable[..., SimpleNamespace]:
    """Factory creating a user, an agent, a schema map, one grant and an agent key bound to it."""

    def _factory(
        *,
        level: PermissionLevel = PermissionLevel.READ_ONLY,
        allowed_entities: list[str] | None = None,
        allowed_actions: list[str] | None = None,
        max_queries_per_day: int = 50,
        requires_approval: bool = False,
        entity_specs: dict | None = None,
    ) -> SimpleNamespace:
        user = User(username=f"user-{uuid4().hex[:8]}", email=f"user-{uuid4().hex[:8]}@example.com")
        db_session.add(user)
        db_session.flush()
        agent = Agent(name=f"agent-{uuid4().hex[:8]}", owner_id=user.id)
        schema_map = SchemaMap(
            name=f"map-{uuid4().hex[:6]}",
            entity_specs=entity_specs if entity_specs is not None else {"User": USER_SPEC, "Agent": AGENT_SPEC},
        )
        db_session.add_all([agent, schema_map])
        db_session.flush()
        grant = PermissionGrant(
            agent_id=agent.id,
            schema_map_id=schema_map.id,
            level=level,
            allowed_entities=allowed_entities if allowed_entities is not None else ["User", "Agent"],
            allowed_actions=(
                allowed_actions
                if allowed_actions is not None
                else ["findMany", "findFirst", "findUnique", "count"]
            ),
            max_queries_per_day=max_queries_per_day,
            requires_approval=requires_approval,
        )
        db_session.add(grant)
        db_session.commit()
        token = f"agent-{uuid4().hex}"
        make_api_key(name=f"agent-{uuid4().hex}", key=token, scope=ApiScope.agent, agent_id=agent.id)
        return SimpleNamespace(
            user=user,
            agent=agent,
            schema_map=schema_map,
            grant=grant,
            headers={"Authorization": f"Bearer {token}"},
        )

    return _factory


@pytest.fixture
def make_query_request(db_session: Session) -> Callable[..., QueryRequest]:
    """Factory persisting a query request directly, bypassing translation."""

    def _factory(
        sandbox: SimpleNamespace,
        *,
        target_entity: str = "User",
        action: str = "findMany",
        params: dict | None = None,
        status: QueryRequestStatus = QueryRequestStatus.APPROVED,
        sandbox_mode: str = "strict",
    ) -> QueryRequest:
        params = params if params is not None else {"where": {"isActive": True}, "take": 10}
        request = QueryRequest(
            agent_id=sandbox.agent.id,
            user_id=sandbox.user.id,
            prompt="test prompt",
            generated_query_text=f"{target_entity}.{action}({json.dumps(params)})",
            target_entity=target_entity,
            action=action,
            params=params,
            status=status,
            sandbox_mode=sandbox_mode,
            validation_warnings=[],
        )
        db_session.add(request)
        db_session.commit()
        return request

    return _factory
