from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from query_sandbox.models.scheduler_lock import SchedulerLock
from query_sandbox.services.scheduler_lock import (
    describe_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)


def test_scheduler_lock_is_reentrant_for_owner(db_session):
    assert try_acquire_scheduler_lock(owner="node-A", db_session=db_session) is True
    assert try_acquire_scheduler_lock(owner="node-A", db_session=db_session) is True
    release_scheduler_lock(owner="node-A", db_session=db_session)
    assert describe_scheduler_lock(db_session=db_session)["present"] is False


def test_lock_cannot_be_taken_if_not_expired(db_session):
    assert try_acquire_scheduler_lock(owner="node-A", ttl_seconds=300, db_session=db_session)
    assert try_acquire_scheduler_lock(owner="node-B", ttl_seconds=300, db_session=db_session) is False

    state = describe_scheduler_lock(db_session=db_session)
    assert state["owner"] == "node-A"
    assert state["status"] == "owned_by_other"


def test_lock_can_be_reacquired_after_expiry(db_session):
    assert try_acquire_scheduler_lock(owner="node-A", ttl_seconds=60, db_session=db_session)

    lock = db_session.execute(select(SchedulerLock).where(SchedulerLock.name == "default")).scalar_one()
    lock.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    db_session.commit()

    assert try_acquire_scheduler_lock(owner="node-B", ttl_seconds=300, db_session=db_session)
    assert describe_scheduler_lock(db_session=db_session)["owner"] == "node-B"
