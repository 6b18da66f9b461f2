from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, MetaData, Select, String, Table, select
from sqlalchemy.engine import Engine

from utils.config import Settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SubscriberTable:
    """The subscriber table as one deployment names it.

    Deployments share the table with other services, so the table name and the
    email, plan and usage-limit column names come from ``Settings``. Code that
    reads or writes subscribers goes through the ``email``, ``plan`` and
    ``usage_limit`` columns held here, never through hard-coded names.
    """

    table: Table
    email: Column
    plan: Column
    usage_limit: Column

    @classmethod
    def from_settings(cls, settings: Settings, metadata: Optional[MetaData] = None) -> "SubscriberTable":
        table = Table(
            settings.users_table,
            metadata if metadata is not None else MetaData(),
            Column("id", Integer, primary_key=True),
            Column(settings.email_column, String(320), unique=True, nullable=False, index=True),
            Column(settings.plan_column, String(32), nullable=False),
            Column(settings.usage_limit_column, String(32), nullable=False),
            Column("created_at", DateTime(timezone=True), default=_utcnow, nullable=False),
        )
        return cls(
            table=table,
            email=table.c[settings.email_column],
            plan=table.c[settings.plan_column],
            usage_limit=table.c[settings.usage_limit_column],
        )

    @property
    def name(self) -> str:
        return self.table.name

    def create(self, bind: Engine) -> None:
        self.table.metadata.create_all(bind=bind)

    def select_records(self) -> Select:
        """Rows labelled ``id, email, plan, usage_limit, created_at`` whatever the column names."""
        return select(
            self.table.c.id,
            self.email.label("email"),
            self.plan.label("plan"),
            self.usage_limit.label("usage_limit"),
            self.table.c.created_at,
        )
