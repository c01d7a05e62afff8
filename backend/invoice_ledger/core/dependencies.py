import logging
from collections.abc import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from invoice_ledger.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}

    if database_url.startswith("sqlite"):
        # FastAPI runs sync dependencies in a threadpool, so the SQLite connection
        # must be usable across threads.
        connect_args = {"check_same_thread": False, "timeout": 30}

    built = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)

    if database_url.startswith("sqlite"):
        @event.listens_for(built, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return built


engine = build_engine(settings.database_url) if settings.database_url else None

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None


def get_db() -> Generator[Session, None, None]:
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_schema(bind: Engine) -> None:
    """Create every table on *bind* (development bootstrap; production uses Alembic)."""
    from invoice_ledger.models.ledger import Base

    if bind.dialect.name == "postgresql":
        with bind.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    Base.metadata.create_all(bind)
    logger.info("Database schema ready (dialect=%s)", bind.dialect.name)
