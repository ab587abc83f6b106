"""
Database connection and session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from quantdesk.config import get_settings
from quantdesk.models.database import Base
import logging

logger = logging.getLogger(__name__)


def make_engine(url: str):
    """Create an engine; SQLite gets WAL and a busy timeout."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory DB
        return create_engine(url, connect_args={"check_same_thread": False},
                             poolclass=StaticPool)

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False} if "sqlite" in url else {}
    )

    if "sqlite" in url:
        from sqlalchemy import event as sa_event

        @sa_event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def make_session_factory(url: str = None) -> sessionmaker:
    engine = make_engine(url or get_settings().database_url)
    Base.metadata.create_all(bind=engine)
    logger.info(f"Audit store ready ({engine.url.get_backend_name()})")
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
