from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from utils.config import DEFAULT_DATABASE_URL


def _resolve_database_url(raw_url: Optional[str]) -> Tuple[URL, Dict[str, Any]]:
    """Normalize the configured store URL for SQLAlchemy.

    Hosted Postgres (Supabase) requires SSL and we ship the psycopg driver, so
    plain postgres URLs are upgraded and get sslmode=require unless set.
    """
    url = make_url(raw_url or DEFAULT_DATABASE_URL)

    if url.drivername.startswith("sqlite"):
        return url, {"check_same_thread": False}

    if url.drivername in {"postgres", "postgresql"}:
        url = url.set(drivername="postgresql+psycopg")

    query = dict(url.query)
    if "sslmode" not in query and url.drivername.startswith("postgresql"):
        query["sslmode"] = "require"
        url = url.set(query=query)

    return url, {}


def build_engine(raw_url: Optional[str] = None) -> Engine:
    url, connect_args = _resolve_database_url(raw_url)
    if url.drivername.startswith("sqlite") and url.database in (None, "", ":memory:"):
        # One shared connection, otherwise every session sees its own empty database.
        return create_engine(url, future=True, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, future=True, pool_pre_ping=True, connect_args=connect_args)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


@contextmanager
def db_session(factory: sessionmaker) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
