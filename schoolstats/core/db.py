"""
SQLAlchemy engine, session, and base. DB URL from config or default.
"""
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base, Session

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine = None
_SessionLocal = None


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager for a single DB session. Commits on success, rolls back on error."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_engine():
    return _engine


def _default_db_url() -> str:
    base = Path.home() / ".schoolstats"
    base.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{base / 'schoolstats.db'}"


def _enable_sqlite_savepoints(engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so pysqlite honours SAVEPOINT (begin_nested)."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> None:
    """
    Initialize database engine and create tables.
    config_data: app config dict; database.url or database.path used if db_url not given.
    db_url: optional SQLAlchemy URL override.
    """
    global _engine, _SessionLocal

    if _engine is not None:
        logger.debug("Database already initialized")
        return

    if db_url is None and config_data:
        db_config = config_data.get("database") or {}
        db_url = db_config.get("url")
        path = db_config.get("path")
        if not db_url and path:
            path = Path(path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{path}"

    if not db_url:
        db_url = _default_db_url()

    # Timer threads and the API thread share the engine
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    _engine = create_engine(db_url, echo=False, future=True, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        _enable_sqlite_savepoints(_engine)

    # Import all model modules so tables are registered with Base
    from schoolstats.core import models as _core_models  # noqa: F401
    from schoolstats.core import schema as _schema  # noqa: F401
    from schoolstats.plugins.statistics import models as _stats  # noqa: F401
    from schoolstats.plugins.students_needing_help import models as _help  # noqa: F401
    from schoolstats.plugins.dashboard_snapshot import models as _snap  # noqa: F401
    from schoolstats.plugins.weekly_parent_reports import models as _reports  # noqa: F401

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    logger.info(f"Database initialized: {db_url.split('?')[0]}")


def close_db() -> None:
    """Dispose the engine so init_db() can be called again (shutdown, tests)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
        logger.debug("Database engine disposed")
    _engine = None
    _SessionLocal = None
