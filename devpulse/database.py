"""
Database configuration and session management for DevPulse.
Used by the SQL-backed record store.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for SQLAlchemy models
Base = declarative_base()


def create_session_factory(database_url: str) -> sessionmaker:
    """
    Create an engine for database_url, make sure the tables exist and
    return a session factory bound to it.

    In-memory SQLite URLs share a single connection so every session
    sees the same database.
    """
    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using them
        "echo": False,
    }
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **engine_kwargs)

    if is_sqlite:
        # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    # Import models so they register on Base.metadata
    from devpulse import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
