"""Security dependencies for API key validation and scope enforcement."""
from __future__ import annotations

from datetime import datetime, UTC
from typing import Callable, Set

from fastapi import Depends, Header, HTTPException, status
import secrets
from sqlalchemy.orm import Session

from query_sandbox.config import DEV_API_KEY, DEV_API_KEY_ALLOWED, ENV
from query_sandbox.db import get_db
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.utils.apikey import find_valid_key
from query_sandbox.utils.audit import log_audit
from query_sandbox.utils.errors import error_response


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def _legacy_key(db: Session) -> ApiKey:
    if not DEV_API_KEY_ALLOWED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("LEGACY_KEY_FORBIDDEN", "Legacy dev key disabled."),
        )
    now = datetime.now(UTC)
    log_audit(
        db,
        actor="legacy-apikey",
        action="LEGACY_API_KEY_USED",
        entity="ApiKey",
        entity_id=0,
        data={"env": ENV},
    )
    db.commit()
    return ApiKey(
        id=0,
        name="__legacy__",
        prefix="legacy",
        key_hash="legacy",
        scope=ApiScope.admin,
        is_active=True,
        created_at=now,
        expires_at=None,
        last_used_at=now,
    )


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> ApiKey:
    """Validate API key tokens and return the corresponding row."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    if DEV_API_KEY and secrets.compare_digest(token, DEV_API_KEY):
        return _legacy_key(db)

    key = find_valid_key(db, token)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    key.last_used_at = datetime.now(UTC)
    log_audit(
        db,
        actor=f"apikey:{key.prefix}",
        action="API_KEY_USED",
        entity="ApiKey",
        entity_id=key.id,
        data={"scope": key.scope.value, "prefix": key.prefix},
    )
    db.commit()
    return key


def require_scope(allowed: Set[ApiScope]) -> Callable:
    """Ensure the key carries one of the allowed scopes (admin always passes)."""

    if not allowed:
        raise RuntimeError("require_scope needs a non-empty set of ApiScope")

    def _dep(key: ApiKey = Depends(require_api_key)) -> ApiKey:
        if key.scope == ApiScope.admin or key.scope in allowed:
            return key
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_SCOPE",
                f"Requires one of: {sorted(scope.value for scope in allowed)}",
            ),
        )

    return _dep


def ensure_agent_access(api_key: ApiKey, agent_id: int | None) -> None:
    """Refuse agent-scope keys acting for an agent they are not bound to."""

    if api_key.scope != ApiScope.agent:
        return
    if api_key.agent_id is None or api_key.agent_id != agent_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("AGENT_KEY_MISMATCH", "API key is not bound to this agent."),
        )


__all__ = ["ensure_agent_access", "require_api_key", "require_scope"]
