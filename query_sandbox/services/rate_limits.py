"""Per-agent query quota and burst limit backed by the query request table."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from query_sandbox.config import get_settings
from query_sandbox.models.permission_grant import PermissionGrant
from query_sandbox.models.query_request import QueryRequest
from query_sandbox.services.permissions import active_grants_for_agent, effective_quota
from query_sandbox.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    used: int
    limit: int
    reason: str | None = None
    warning: str | None = None

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


def decide(used: int, limit: int, *, warning_ratio: float | None = None) -> RateLimitDecision:
    """Pure quota decision for ``used`` out of ``limit``."""

    if warning_ratio is None:
        warning_ratio = get_settings().RATE_LIMIT_WARNING_RATIO
    if used >= limit:
        return RateLimitDecision(
            allowed=False,
            used=used,
            limit=limit,
            reason=f"Daily query limit reached ({used}/{limit})",
        )
    if used >= warning_ratio * limit:
        return RateLimitDecision(
            allowed=True,
            used=used,
            limit=limit,
            warning=f"Approaching daily query limit ({used}/{limit})",
        )
    return RateLimitDecision(allowed=True, used=used, limit=limit)


def count_recent_queries(
    db: Session,
    agent_id: int,
    *,
    since: datetime,
    user_id: int | None = None,
    exclude_request_id: int | None = None,
) -> int:
    """Requests of the agent created since ``since``, whatever their outcome."""

    stmt = select(func.count(QueryRequest.id)).where(
        QueryRequest.agent_id == agent_id,
        QueryRequest.created_at >= since,
    )
    if user_id is not None:
        stmt = stmt.where(QueryRequest.user_id == user_id)
    if exclude_request_id is not None:
        stmt = stmt.where(QueryRequest.id != exclude_request_id)
    return int(db.scalar(stmt) or 0)


def check_rate_limits(
    db: Session,
    agent_id: int,
    user_id: int | None = None,
    *,
    now: datetime | None = None,
    grants: Sequence[PermissionGrant] | None = None,
    exclude_request_id: int | None = None,
) -> RateLimitDecision:
    """Return whether the agent may run one more query.

    Two windows apply: the grant quota over ``RATE_LIMIT_WINDOW_HOURS`` and
    the burst limit over ``RATE_LIMIT_BURST_WINDOW_MINUTES``. Every request
    created in a window counts, including rejected and failed ones.
    ``exclude_request_id`` leaves out the request being executed.
    """

    settings = get_settings()
    now = now or utcnow()
    if grants is None:
        grants = active_grants_for_agent(db, agent_id)
    limit = effective_quota(grants)
    if limit is None:
        return RateLimitDecision(allowed=False, used=0, limit=0, reason="Agent has no permissions")

    scoped_user = user_id if settings.RATE_LIMIT_PER_USER else None
    burst_since = now - timedelta(minutes=settings.RATE_LIMIT_BURST_WINDOW_MINUTES)
    burst = count_recent_queries(
        db, agent_id, since=burst_since, user_id=scoped_user, exclude_request_id=exclude_request_id
    )
    if burst >= settings.RATE_LIMIT_BURST_LIMIT:
        logger.warning(
            "Agent burst limit reached",
            extra={"agent_id": agent_id, "used": burst, "limit": settings.RATE_LIMIT_BURST_LIMIT},
        )
        return RateLimitDecision(
            allowed=False,
            used=burst,
            limit=settings.RATE_LIMIT_BURST_LIMIT,
            reason=(
                f"Burst rate limit reached ({burst}/{settings.RATE_LIMIT_BURST_LIMIT} "
                f"in last {settings.RATE_LIMIT_BURST_WINDOW_MINUTES} minutes)"
            ),
        )

    since = now - timedelta(hours=settings.RATE_LIMIT_WINDOW_HOURS)
    used = count_recent_queries(
        db, agent_id, since=since, user_id=scoped_user, exclude_request_id=exclude_request_id
    )
    decision = decide(used, limit, warning_ratio=settings.RATE_LIMIT_WARNING_RATIO)
    if not decision.allowed:
        logger.warning(
            "Agent query quota exhausted",
            extra={"agent_id": agent_id, "used": used, "limit": limit},
        )
    return decision


__all__ = ["RateLimitDecision", "check_rate_limits", "count_recent_queries", "decide"]
