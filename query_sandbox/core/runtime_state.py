"""In-process state of the background jobs, reported on /health."""
from __future__ import annotations

from datetime import datetime
from typing import Any

_scheduler_active = False
_last_stale_sweep: dict[str, Any] = {"at": None, "rejected": 0}


def set_scheduler_active(active: bool) -> None:
    global _scheduler_active
    _scheduler_active = active


def is_scheduler_active() -> bool:
    return _scheduler_active


def record_stale_sweep(at: datetime, rejected: int) -> None:
    _last_stale_sweep["at"] = at
    _last_stale_sweep["rejected"] = rejected


def last_stale_sweep() -> dict[str, Any]:
    at = _last_stale_sweep["at"]
    return {"at": at.isoformat() if at else None, "rejected": _last_stale_sweep["rejected"]}
