"""User endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from query_sandbox.db import get_db
from query_sandbox.models.api_key import ApiKey, ApiScope
from query_sandbox.models.user import User
from query_sandbox.schemas.user import UserCreate, UserRead
from query_sandbox.security import require_scope
from query_sandbox.utils.audit import actor_from_api_key, log_audit
from query_sandbox.utils.errors import error_response

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> User:
    """Create a new user."""

    user = User(**payload.model_dump())
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("USER_CREATE_FAILED", "Could not create user."),
        ) from exc

    log_audit(
        db,
        actor=actor_from_api_key(api_key, fallback="apikey:unknown"),
        action="CREATE_USER",
        entity="User",
        entity_id=user.id,
        data={"username": user.username, "email": user.email},
    )
    db.commit()
    db.refresh(user)
    return user


@router.get(
    "",
    response_model=list[UserRead],
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def list_users(db: Session = Depends(get_db)) -> list[User]:
    return list(db.scalars(select(User).order_by(User.id)))


@router.get(
    "/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def get_user(user_id: int, db: Session = Depends(get_db)) -> User:
    """Retrieve a user by identifier."""

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_response("USER_NOT_FOUND", "User not found."))
    return user
