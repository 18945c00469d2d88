"""Query log schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class QueryLogRead(BaseModel):
    log_id: str
    entity: str
    action: str
    params_digest: str
    params_text: str
    duration_ms: float
    status: str
    is_slow: bool
    result_size: int
    result_preview: str | None = None
    error_message: str | None = None
    tags: list[str]
    owner_ids: dict[str, Any]
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)
