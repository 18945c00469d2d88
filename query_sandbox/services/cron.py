"""Background cron jobs for maintenance tasks."""
from __future__ import annotations

import logging

from query_sandbox import db
from query_sandbox.core.runtime_state import record_stale_sweep
from query_sandbox.services.approvals import reject_stale_pending_requests
from query_sandbox.utils.time import utcnow

logger = logging.getLogger(__name__)


def reject_stale_requests_once() -> int:
    """Reject query requests left pending beyond the approval window."""

    started = utcnow()
    with db.session_scope() as session:
        rejected = reject_stale_pending_requests(session, now=started)
    record_stale_sweep(started, rejected)
    if rejected:
        logger.info("Stale query requests rejected", extra={"rejected": rejected})
    return rejected


__all__ = ["reject_stale_requests_once"]
