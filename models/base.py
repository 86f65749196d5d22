"""Base model configuration."""

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Define naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)
Base = declarative_base(metadata=metadata)

# Database session management
_engine: Engine | None = None
_SessionLocal = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """Turn on ON DELETE CASCADE support for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(database_url: str) -> Engine:
    """Initialize database connection with connection pooling."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()

    # SQLite doesn't support connection pooling parameters
    if database_url.startswith("sqlite"):
        # Ensure data directory exists for file-backed databases
        if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
            db_path = Path(database_url.replace("sqlite:///", "", 1))
            db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},  # Allow multi-threading for SQLite
        )
        event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
    else:
        _engine = create_engine(
            database_url,
            pool_size=20,  # Max persistent connections
            max_overflow=10,  # Additional connections when pool exhausted
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    _SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=_engine
    )
    return _engine


def create_tables() -> None:
    """Create every scheduler table that does not exist yet."""
    if _engine is None:
        raise RuntimeError("Database not initialized; call init_db() first")

    # Import models so they are attached to Base.metadata
    from models.scheduled_task import ScheduledTask  # noqa: F401
    from models.scheduler_override import SchedulerOverride  # noqa: F401
    from models.task_run import ScheduledTaskRun  # noqa: F401

    Base.metadata.create_all(bind=_engine)


def get_engine() -> Engine | None:
    """Return the engine created by init_db(), if any."""
    return _engine


@contextmanager
def get_db_session():
    """Get database session context manager."""
    if _SessionLocal is None:
        from config.settings import get_settings

        settings = get_settings()
        init_db(settings.database_url)

    session = _SessionLocal()
    try:
        yield session
    finally:
        session.close()
