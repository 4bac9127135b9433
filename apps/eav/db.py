"""Database engine, session factory and table bootstrap."""

from contextlib import contextmanager, nullcontext
from typing import Generator

import sqlalchemy.exc
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from apps.eav.config import config
from apps.eav.migrations import introspect
from apps.eav.models import Base, StorageLayout, layout_metadata


def _configure_sqlite(engine: Engine) -> None:
    """Foreign keys on (SQLite ignores ON DELETE CASCADE otherwise) and explicit BEGIN so SAVEPOINT works."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        # pysqlite's own BEGIN handling breaks begin_nested()
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for url. In-memory SQLite gets a single shared connection."""
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
        eng = create_engine(url, echo=echo, **kwargs)
        _configure_sqlite(eng)
        return eng
    return create_engine(url, pool_pre_ping=True, echo=echo)


engine = make_engine(config.DATABASE_URL, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """Provide a transactional scope: one request-scoped transaction per block."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_tables(bind: Engine | Connection | None = None, layout: StorageLayout | None = None) -> None:
    """Create registry/catalog tables and every value table of layout if they do not exist.

    Idempotent (checkfirst=True). Production schemas are owned by the migrator / Alembic;
    this is the shortcut for tests and local SQLite.
    """
    bind = bind if bind is not None else engine
    if layout is None:
        layout = StorageLayout.from_config()
    if layout is None:
        with bind.connect() if isinstance(bind, Engine) else nullcontext(bind) as conn:
            layout = introspect.resolve_layout(conn)
    _create_all_safe(bind, StorageLayout(layout))


def _create_all_safe(bind: Engine | Connection, layout: StorageLayout) -> None:
    """Run create_all with checkfirst=True; ignore Postgres 'already exists' errors for idempotency.
    Uses AUTOCOMMIT on Postgres so partial progress persists when a duplicate index is hit."""
    if isinstance(bind, Engine):
        opts = {"isolation_level": "AUTOCOMMIT"} if bind.dialect.name == "postgresql" else {}
        conn = bind.connect().execution_options(**opts)
    else:
        conn = bind
    try:
        for md in (Base.metadata, layout_metadata(layout)):
            try:
                md.create_all(bind=conn, checkfirst=True)
            except sqlalchemy.exc.ProgrammingError as e:
                orig = e.orig
                ok = False
                if orig is not None:
                    err_name = getattr(orig.__class__, "__module__", "") + "." + getattr(orig.__class__, "__name__", "")
                    ok = "DuplicateTable" in err_name or "DuplicateObject" in err_name
                if not ok:
                    ok = "already exists" in str(e).lower()
                if not ok:
                    raise
        if isinstance(bind, Engine) and conn.in_transaction():
            conn.commit()
    finally:
        if isinstance(bind, Engine):
            conn.close()
