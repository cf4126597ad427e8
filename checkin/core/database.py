"""Database configuration and session management for SQLite.

The registration store and the audit trail share one SQLite database.
Check-in stations hit it concurrently, so the engine is configured for that:

    - **WAL (Write-Ahead Logging)**: readers are not blocked while a
      validation or an audit row is being written.

    - **Foreign Keys**: SQLite ships with them disabled. Registrations must
      reference an existing event, so they are switched on per connection.

    - **check_same_thread=False**: check-in handlers run on FastAPI's worker
      thread pool, and a pooled connection may be reused by another thread.
"""

from sqlalchemy import event as sa_event
from sqlmodel import Session, SQLModel, create_engine

from checkin.core.config import settings

connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,  # Log SQL statements when DEBUG=true
)


@sa_event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite pragmas on each new connection.

    Pragmas are connection-level, so they are applied every time the pool
    opens a new connection.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_and_tables():
    """Create all database tables."""
    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for getting database session."""
    with Session(engine) as session:
        yield session
