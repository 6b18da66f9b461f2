from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy import update
from sqlalchemy.engine import Row
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from svc.errors import StoreWriteError
from svc.identity import normalize_email
from utils.logger import get_logger
from utils.plans import Plan

from .models import SubscriberTable
from .session import db_session

logger = get_logger(__name__)

_DIALECT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class WriteResult(str, Enum):
    WRITTEN = "written"
    NOT_FOUND = "not_found"


def get_subscriber(db: Session, subscribers: SubscriberTable, email: str) -> Optional[Row]:
    key = normalize_email(email)
    if key is None:
        return None
    return db.execute(subscribers.select_records().where(subscribers.email == key)).one_or_none()


def upsert_subscriber_plan(
    db: Session, subscribers: SubscriberTable, *, email: str, plan: Plan, usage_limit: str
) -> WriteResult:
    """Create the subscriber row or overwrite its plan columns in one statement."""
    dialect = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise StoreWriteError(f"Upsert is not supported on the {dialect} dialect.")

    stmt = insert(subscribers.table).values(
        {
            subscribers.email: email,
            subscribers.plan: plan.value,
            subscribers.usage_limit: usage_limit,
        }
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[subscribers.email],
        set_={
            subscribers.plan: stmt.excluded[subscribers.plan.name],
            subscribers.usage_limit: stmt.excluded[subscribers.usage_limit.name],
        },
    )
    db.execute(stmt)
    return WriteResult.WRITTEN


def update_subscriber_plan(
    db: Session, subscribers: SubscriberTable, *, email: str, plan: Plan, usage_limit: str
) -> WriteResult:
    """Overwrite the plan columns of an existing row; never creates one."""
    result = db.execute(
        update(subscribers.table)
        .where(subscribers.email == email)
        .values({subscribers.plan: plan.value, subscribers.usage_limit: usage_limit})
    )
    if not result.rowcount:
        return WriteResult.NOT_FOUND
    return WriteResult.WRITTEN


class SubscriberWriter:
    """Applies plan changes to the subscriber store.

    ``create_if_missing`` picks the deployment posture: upsert keyed on email,
    or update-only where another system owns record creation. Every mutating
    path (webhook and admin override) goes through the same instance.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        subscribers: SubscriberTable,
        *,
        create_if_missing: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self.subscribers = subscribers
        self.create_if_missing = create_if_missing

    def apply(self, email: str, plan: Plan, usage_limit: str) -> WriteResult:
        key = normalize_email(email)
        if key is None:
            raise ValueError("Subscriber email is required.")

        write = upsert_subscriber_plan if self.create_if_missing else update_subscriber_plan
        try:
            with db_session(self._session_factory) as db:
                result = write(db, self.subscribers, email=key, plan=plan, usage_limit=usage_limit)
        except SQLAlchemyError as exc:
            logger.error("Failed to write plan %s for %s: %s", plan.value, key, exc)
            raise StoreWriteError(f"Failed to write plan for {key}") from exc

        if result is WriteResult.NOT_FOUND:
            logger.warning("No %s row for %s; plan %s not applied", self.subscribers.name, key, plan.value)
        else:
            logger.info("Set plan %s (limit %s) for %s", plan.value, usage_limit, key)
        return result
