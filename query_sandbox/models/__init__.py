"""ORM models package."""
from .agent import Agent
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .permission_grant import DEFAULT_ALLOWED_ACTIONS, PermissionGrant, PermissionLevel
from .query_log import QueryLog
from .query_request import APPROVED_STATUSES, QueryRequest, QueryRequestStatus
from .query_template import QueryTemplate
from .scheduler_lock import SchedulerLock
from .schema_map import SchemaMap
from .user import User

__all__ = [
    "Agent",
    "ApiKey",
    "ApiScope",
    "APPROVED_STATUSES",
    "AuditLog",
    "Base",
    "DEFAULT_ALLOWED_ACTIONS",
    "PermissionGrant",
    "PermissionLevel",
    "QueryLog",
    "QueryRequest",
    "QueryRequestStatus",
    "QueryTemplate",
    "SchedulerLock",
    "SchemaMap",
    "User",
]
