"""Shared test DB bootstrap (guard + schema reset + Alembic helpers). Used by the conftests."""

import logging
import os
from pathlib import Path
from urllib.parse import urlparse, urlunparse

_ROOT = Path(__file__).resolve().parent.parent

_LOG = logging.getLogger(__name__)


def parse_db_name(url: str) -> str:
    """Extract database name from postgres URL (path without leading slash)."""
    p = urlparse(url)
    path = (p.path or "").strip("/")
    return path.split("/")[0] if path else ""


def parse_db_user(url: str) -> str:
    """Extract database user from postgres URL. Returns 'postgres' if absent or not a plain identifier."""
    u = (urlparse(url).username or "postgres").strip()
    if u and all(c.isalnum() or c == "_" for c in u):
        return u
    return "postgres"


def _assert_schema_reset_safe(url: str) -> None:
    """Raise RuntimeError if schema reset is not allowed (safety check).
    Allowed when: db name contains '_test' OR ALLOW_TEST_DB_RESET=true."""
    if os.environ.get("ALLOW_TEST_DB_RESET", "").lower() in ("1", "true", "yes"):
        return
    db_name = parse_db_name(url)
    if "_test" in db_name:
        return
    raise RuntimeError(
        f"Schema reset blocked: DATABASE_TEST_URL db name must contain '_test' "
        f"or set ALLOW_TEST_DB_RESET=true. Got db: {db_name!r}"
    )


def postgres_reachable(url: str | None, timeout: int = 2) -> bool:
    """Return True if Postgres at url is reachable. Uses short timeout to avoid flaky CI."""
    if not url or not url.strip().lower().startswith("postgresql"):
        return False
    from sqlalchemy import create_engine
    from sqlalchemy.exc import SQLAlchemyError

    eng = create_engine(url, connect_args={"connect_timeout": timeout})
    try:
        with eng.connect():
            return True
    except SQLAlchemyError as e:
        _LOG.info("Postgres not reachable at %s: %s", _mask_password(url), e)
        return False
    finally:
        eng.dispose()


def _is_local_postgres(url: str) -> bool:
    """Return True if URL points to local Postgres (localhost/127.0.0.1)."""
    host = (urlparse(url).hostname or "").lower()
    return host in ("localhost", "127.0.0.1", "")


def create_database_if_missing(url: str) -> None:
    """Create the database if it does not exist. Local Postgres only (no network)."""
    if not _is_local_postgres(url):
        _LOG.warning("Skipping create_database_if_missing: %s is not local", urlparse(url).hostname)
        return
    db_name = parse_db_name(url)
    if not db_name or not all(c.isalnum() or c == "_" for c in db_name):
        return
    p = urlparse(url)
    admin_url = urlunparse((p.scheme, p.netloc, "/postgres", "", "", ""))
    from sqlalchemy import create_engine, text
    from sqlalchemy.exc import SQLAlchemyError

    engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        with engine.connect() as conn:
            r = conn.execute(text("SELECT 1 FROM pg_database WHERE datname = :n"), {"n": db_name})
            if r.scalar() is None:
                conn.execute(text(f'CREATE DATABASE "{db_name}"'))
                _LOG.info("Created test database: %s", db_name)
    except SQLAlchemyError as e:
        _LOG.warning("Could not ensure test database %s exists: %s", db_name, e)
    finally:
        engine.dispose()


def reset_public_schema(url: str) -> None:
    """Drop and recreate schema public. Guarded by _assert_schema_reset_safe."""
    _assert_schema_reset_safe(url)
    from sqlalchemy import create_engine, text

    db_user = parse_db_user(url)
    engine = create_engine(url, isolation_level="AUTOCOMMIT")
    try:
        with engine.connect() as conn:
            conn.execute(text("DROP SCHEMA IF EXISTS public CASCADE"))
            conn.execute(text("CREATE SCHEMA public"))
            conn.execute(text(f"GRANT ALL ON SCHEMA public TO {db_user}"))
            conn.execute(text("GRANT ALL ON SCHEMA public TO public"))
    finally:
        engine.dispose()


def _alembic_config_with_url(db_url: str):
    """Build Alembic config with sqlalchemy.url set to db_url."""
    from alembic.config import Config

    alembic_ini = _ROOT / "alembic.ini"
    if not alembic_ini.exists():
        raise FileNotFoundError(f"alembic.ini not found at {alembic_ini}")
    cfg = Config(str(alembic_ini))
    cfg.set_main_option("script_location", str(_ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def run_alembic_upgrade(db_url: str, revision: str = "head") -> None:
    """Run alembic upgrade with the given db_url. Forces sqlalchemy.url dynamically."""
    from alembic import command

    command.upgrade(_alembic_config_with_url(db_url), revision)
    _LOG.info("Ran alembic upgrade %s", revision)


def run_alembic_downgrade(db_url: str, revision: str = "base") -> None:
    from alembic import command

    command.downgrade(_alembic_config_with_url(db_url), revision)
    _LOG.info("Ran alembic downgrade %s", revision)


def _mask_password(url: str) -> str:
    """Mask password in a database URL for logging."""
    p = urlparse(url)
    netloc = p.netloc
    if p.password and "@" in netloc:
        user_part, host_part = netloc.rsplit("@", 1)
        user = user_part.split(":", 1)[0]
        netloc = f"{user}:****@{host_part}"
    return urlunparse((p.scheme, netloc, p.path or "", "", "", ""))


def ensure_test_db_guard() -> None:
    """Ensure DB tests use a *_test database. Run at session start when DATABASE_TEST_URL is set."""
    url = os.environ.get("DATABASE_TEST_URL")
    if not url:
        return
    db_name = parse_db_name(url)
    if "_test" not in db_name and os.environ.get("ALLOW_TEST_DB_RESET", "").lower() not in ("1", "true", "yes"):
        raise RuntimeError(
            f"Tests must use a *_test database. Set DATABASE_TEST_URL to a db whose name contains '_test'. "
            f"Current db: {db_name!r}"
        )
    _LOG.info("pytest using test DB: %s", _mask_password(url))
    create_database_if_missing(url)
