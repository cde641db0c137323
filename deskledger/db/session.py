# deskledger/db/session.py
"""Database session factory, initialization and the ledger unit of work."""

import logging
import os
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv
from sqlmodel import SQLModel, create_engine, Session

from deskledger.utils.clock import SystemClock, UuidIdGenerator
from deskledger.utils.config import LedgerSettings

logger = logging.getLogger(__name__)

load_dotenv()

# Get database URL from environment, default to local SQLite
DATABASE_URL = os.getenv("DATABASE_URL", os.getenv("DESKLEDGER_DATABASE_URL", "sqlite:///./deskledger.db"))


def make_engine(url: str):
    """Engine for `url`; creates the directory of a file-backed SQLite database."""
    if url.startswith("sqlite:///") and ":memory:" not in url:
        db_path = url.replace("sqlite:///", "")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        url,
        connect_args={"check_same_thread": False} if "sqlite" in url else {},
        echo=False,
    )


engine = make_engine(DATABASE_URL)


def configure_engine(url: str):
    """Point the module engine at another database (CLI --database / config)."""
    global engine, DATABASE_URL
    if url != DATABASE_URL:
        engine.dispose()
        DATABASE_URL = url
        engine = make_engine(url)
        logger.info(f"Using database {url}")
    return engine


def create_db_and_tables():
    """Create all tables if they don't exist."""
    # Register table models on the metadata before create_all
    import deskledger.db.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Session:
    """Get a new database session."""
    return Session(engine)


def init_db():
    """Initialize database on startup."""
    create_db_and_tables()


class UnitOfWork:
    """
    Transaction context handed down every mutating call chain.

    Carries the session plus the injected clock, document-number generator and
    ledger settings. transaction() nests: only the outermost block commits, and
    any exception rolls the whole write back.
    """

    def __init__(self, session: Session, clock=None, ids=None, settings: LedgerSettings = None):
        self.settings = settings or LedgerSettings()
        self.session = session
        self.clock = clock or SystemClock(self.settings.business_timezone)
        self.ids = ids or UuidIdGenerator()
        self._depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self):
        if self._depth:
            self._depth += 1
            try:
                yield self.session
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self.session
            self.session.commit()
        except Exception:
            logger.debug("Rolling back ledger transaction")
            self.session.rollback()
            raise
        finally:
            self._depth = 0
