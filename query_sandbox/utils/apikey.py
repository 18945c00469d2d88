"""API key generation and validation helpers."""
from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from query_sandbox.config import settings
from query_sandbox.models.api_key import ApiKey
from query_sandbox.utils.time import ensure_utc, utcnow


def hash_key(raw: str) -> str:
    """Return an HMAC-SHA256 hash for the provided API key."""

    return hmac.new(settings.SECRET_KEY.encode(), raw.encode(), hashlib.sha256).hexdigest()


def gen_key(prefix_len: int = 6) -> tuple[str, str, str]:
    """Generate a user-facing API key, its prefix, and the stored hash."""

    prefix = "qsbx_" + secrets.token_hex(prefix_len)[:prefix_len]
    suffix = secrets.token_urlsafe(32)
    raw = f"{prefix}.{suffix}"
    return raw, prefix, hash_key(raw)


def find_valid_key(db: Session, raw: str) -> Optional[ApiKey]:
    """Return the matching active, unexpired API key if any."""

    key = db.scalars(
        select(ApiKey).where(ApiKey.key_hash == hash_key(raw), ApiKey.is_active.is_(True))
    ).first()
    if key is None:
        return None
    expires_at = ensure_utc(key.expires_at)
    if expires_at is not None and expires_at <= utcnow():
        return None
    return key


__all__ = ["hash_key", "gen_key", "find_valid_key"]
