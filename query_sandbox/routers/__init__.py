"""API routers for the agent query sandbox."""
from fastapi import APIRouter

from . import (
    agent_queries,
    agents,
    apikeys,
    health,
    permission_grants,
    query_logs,
    query_templates,
    schema_maps,
    users,
)


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(agents.router)
    api_router.include_router(schema_maps.router)
    api_router.include_router(permission_grants.router)
    api_router.include_router(query_templates.router)
    api_router.include_router(agent_queries.router)
    api_router.include_router(query_logs.router)
    api_router.include_router(apikeys.router)
    return api_router
