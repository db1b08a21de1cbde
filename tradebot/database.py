"""SQLModel database engine and session management."""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from tradebot.config import settings

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> Engine:
    # SQLite needs check_same_thread=False; PostgreSQL does not
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory databases only live as long as their single connection
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


engine = make_engine(settings.database_url)


def create_db_and_tables(bind: Engine | None = None):
    """Create all tables. Called on startup."""
    import tradebot.models  # noqa: F401  registers the tables on SQLModel.metadata

    SQLModel.metadata.create_all(bind or engine)
    logger.info("Database tables ready")
