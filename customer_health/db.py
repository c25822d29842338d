# customer_health/db.py
"""
customer_health/db.py

Database configuration and session management for the Customer Health service.

The engine is owned by an explicit `Database` object instead of a module-level
global. The application creates one in its lifespan hook, calls `connect()`
once (engine + connectivity check + table creation) and stores it on
`app.state.database`. Request handlers receive sessions through the `get_db`
dependency.

Key features:
- Uses PostgreSQL by default (`config.DATABASE_URL`), SQLite in tests.
- Connection is robust to transient DB restarts (`pool_pre_ping=True`).
- A failed startup connect is retried by `get_db` on the next request; while
  the database stays unreachable it raises `DatabaseNotReady`
  (rendered as 503) rather than failing with an attribute error.
"""

import logging
import threading
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import DatabaseNotReady

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Owns the SQLAlchemy engine and session factory for one database URL."""

    def __init__(self, url: str, **engine_kwargs):
        self.url = url
        self._engine_kwargs = engine_kwargs
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._session_factory is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseNotReady("database engine has not been created")
        return self._engine

    def connect(self, create_tables: bool = True) -> None:
        """
        Create the engine, verify connectivity and (optionally) create tables.

        Calling it again on a ready database is a no-op. Concurrent callers
        wait for the first one; at most one engine is ever kept.
        """
        if self.ready:
            return
        with self._lock:
            if self.ready:
                return
            kwargs = {"pool_pre_ping": True, "future": True}
            kwargs.update(self._engine_kwargs)
            engine = create_engine(self.url, **kwargs)
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                if create_tables:
                    # Import registers the ORM tables on Base.metadata
                    from . import models  # noqa: F401
                    Base.metadata.create_all(bind=engine)
            except Exception:
                engine.dispose()
                raise
            self._engine = engine
            self._session_factory = sessionmaker(
                autocommit=False, autoflush=False, bind=engine, future=True
            )
        logger.info("Connected to database %s", engine.url.render_as_string(hide_password=True))

    def session(self) -> Session:
        if self._session_factory is None:
            raise DatabaseNotReady("database is not connected yet")
        return self._session_factory()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None


# FastAPI dependency
def get_db(request: Request) -> Iterator[Session]:
    """
    Provide a SQLAlchemy session to FastAPI request handlers.

    Usage in a FastAPI route:
        @app.get("/items/{item_id}")
        def read_item(item_id: int, db: Session = Depends(get_db)):
            return db.get(Item, item_id)

    A database that failed to connect at startup is retried here, so the
    first request after it becomes reachable gets through.

    Raises:
        DatabaseNotReady: the app has no database, or it is still unreachable.
    """
    database: Optional[Database] = getattr(request.app.state, "database", None)
    if database is None:
        raise DatabaseNotReady("no database configured")
    if not database.ready:
        try:
            database.connect()
        except Exception as exc:
            logger.warning("Database still unavailable: %s", exc)
            raise DatabaseNotReady("database is not connected yet") from exc
    db = database.session()
    try:
        yield db
    finally:
        db.close()
