"""Read access to executed query audit entries."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from query_sandbox.db import get_db
from query_sandbox.models.api_key import ApiScope
from query_sandbox.models.query_log import QueryLog
from query_sandbox.schemas.query_log import QueryLogRead
from query_sandbox.security import require_scope
from query_sandbox.utils.errors import error_response

router = APIRouter(prefix="/query-logs", tags=["query-logs"])


@router.get(
    "/{log_id}",
    response_model=QueryLogRead,
    dependencies=[Depends(require_scope({ApiScope.reviewer}))],
)
def get_query_log(log_id: str, db: Session = Depends(get_db)) -> QueryLog:
    entry = db.scalar(select(QueryLog).where(QueryLog.log_id == log_id))
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("QUERY_LOG_NOT_FOUND", "Query log entry not found."),
        )
    return entry
