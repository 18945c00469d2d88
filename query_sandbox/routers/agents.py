"""Agent endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from query_sandbox.db import get_db
from query_sandbox.models.agent import Agent
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.models.user import User
from query_sandbox.schemas.agent import AgentCreate, AgentRead
from query_sandbox.security import require_scope
from query_sandbox.utils.audit import actor_from_api_key, log_audit
from query_sandbox.utils.errors import error_response

router = APIRouter(prefix="/agents", tags=["agents"])


@router.post("", response_model=AgentRead, status_code=status.HTTP_201_CREATED)
def create_agent(
    payload: AgentCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> Agent:
    """Register an agent that can later receive permission grants."""

    if payload.owner_id is not None and db.get(User, payload.owner_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("USER_NOT_FOUND", "Owner user not found."),
        )

    agent = Agent(**payload.model_dump())
    db.add(agent)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("AGENT_CREATE_FAILED", "Could not create agent."),
        ) from exc

    log_audit(
        db,
        actor=actor_from_api_key(api_key, fallback="apikey:unknown"),
        action="CREATE_AGENT",
        entity="Agent",
        entity_id=agent.id,
        data={"name": agent.name},
    )
    db.commit()
    db.refresh(agent)
    return agent


@router.get(
    "",
    response_model=list[AgentRead],
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def list_agents(db: Session = Depends(get_db)) -> list[Agent]:
    return list(db.scalars(select(Agent).order_by(Agent.id)))


@router.get(
    "/{agent_id}",
    response_model=AgentRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def get_agent(agent_id: int, db: Session = Depends(get_db)) -> Agent:
    agent = db.get(Agent, agent_id)
    if not agent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_response("AGENT_NOT_FOUND", "Agent not found."))
    return agent
