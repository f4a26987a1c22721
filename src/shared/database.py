"""Database engine, session and unit-of-work helpers.

All persistent state lives in one relational database reached through
SQLAlchemy. Handlers open a unit of work, lock the rows they are about to
change, mutate them through the model methods and let the unit of work
commit. Contention between concurrent writers is turned into
``OptimisticConflict`` and retried a bounded number of times by
``retry_on_conflict``.

SQLite serialises writers with ``BEGIN IMMEDIATE`` and bounds the wait with
its busy timeout. PostgreSQL uses ``SELECT ... FOR UPDATE`` row locks bounded
by ``lock_timeout``. Both dialects also carry an optimistic version counter on
products, so a lost update can never slip through silently.
"""

import functools
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import structlog
from sqlalchemy import DateTime, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from shared.config import get_settings
from shared.exceptions import OptimisticConflict

logger = structlog.get_logger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
_RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}


class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """Store naive UTC, hand back aware UTC datetimes on every dialect."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Engine and sessions
# ---------------------------------------------------------------------------
_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def _install_sqlite_locking(engine: Engine) -> None:
    """Take the database write lock at BEGIN instead of at the first write.

    pysqlite's own transaction handling is switched off so that SQLAlchemy's
    begin event controls exactly when the transaction starts.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    settings = get_settings()
    url = url or settings.database_url
    echo = settings.database_echo if echo is None else echo

    if url.startswith("sqlite"):
        kwargs = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": settings.lock_timeout_seconds,
            }
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
        _install_sqlite_locking(engine)
        return engine

    lock_timeout_ms = int(settings.lock_timeout_seconds * 1000)
    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c lock_timeout={lock_timeout_ms}"
    return create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)


def configure_database(url: str | None = None, echo: bool | None = None) -> Engine:
    """(Re)bind the module-level engine and session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = create_db_engine(url, echo)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.debug("Database configured", url=_engine.url.render_as_string(hide_password=True))
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        configure_database()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        configure_database()
    return _session_factory


def _is_contention(exc: DBAPIError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    message = str(exc.orig).lower()
    return "database is locked" in message or "database table is locked" in message


@contextmanager
def unit_of_work() -> Iterator[Session]:
    """Yield a session inside one transaction.

    Commits when the block exits cleanly and rolls back on any exception.
    Lock contention and stale versions are re-raised as ``OptimisticConflict``.
    """
    session = get_session_factory()()
    try:
        with session.begin():
            yield session
    except StaleDataError as exc:
        raise OptimisticConflict({"version": ["Row was modified concurrently"]}) from exc
    except DBAPIError as exc:
        if _is_contention(exc):
            raise OptimisticConflict({"lock": ["Timed out waiting for a concurrent writer"]}) from exc
        raise
    finally:
        session.close()


def retry_on_conflict(func):
    """Re-run ``func`` when it fails with ``OptimisticConflict``.

    ``func`` must open its own unit of work so every attempt starts from a
    fresh transaction. Attempts and backoff come from settings.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        settings = get_settings()
        attempts = max(1, settings.conflict_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except OptimisticConflict as exc:
                if attempt == attempts:
                    logger.warning(
                        "Giving up after repeated conflicts",
                        operation=func.__name__,
                        attempts=attempts,
                        error=str(exc),
                    )
                    raise
                logger.info("Retrying after conflict", operation=func.__name__, attempt=attempt)
                time.sleep(settings.conflict_retry_backoff_seconds * attempt)

    return wrapper


# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------
def _load_models() -> None:
    """Import every model module so their tables register on ``Base.metadata``."""
    import inventory.ledger.ledger  # noqa: F401
    import inventory.stock.stock  # noqa: F401
    import ordering.cart.cart  # noqa: F401
    import ordering.order.order  # noqa: F401
    import payments.payment.payment  # noqa: F401
    import payments.webhook.webhook  # noqa: F401


def setup_db(engine: Engine | None = None) -> None:
    """Create all tables."""
    _load_models()
    Base.metadata.create_all(engine or get_engine())


def drop_db(engine: Engine | None = None) -> None:
    """Drop all tables."""
    _load_models()
    Base.metadata.drop_all(engine or get_engine())


def truncate_all(engine: Engine | None = None) -> None:
    """Delete every row from every table, children first."""
    with (engine or get_engine()).begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
