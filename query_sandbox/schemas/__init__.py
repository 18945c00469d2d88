"""Schema package exports."""
from .agent import AgentCreate, AgentRead
from .permission_grant import PermissionGrantCreate, PermissionGrantRead, PermissionGrantUpdate
from .query_log import QueryLogRead
from .query_request import (
    AgentQueryCreate,
    ApprovalDecision,
    ExecuteOptions,
    ExecutionRead,
    QueryOptions,
    QueryRequestPage,
    QueryRequestRead,
    QueryValidationRequest,
    SubmitResultRead,
    ValidationRead,
)
from .query_template import QueryTemplateCreate, QueryTemplateRead, QueryTemplateUpdate
from .schema_map import (
    EntitySpec,
    SchemaMapCreate,
    SchemaMapGenerate,
    SchemaMapGenerated,
    SchemaMapRead,
    SchemaMapUpdate,
)
from .user import UserCreate, UserRead
