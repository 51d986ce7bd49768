# drop_relay/infra/database.py

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from drop_relay.models.base import Base
# Register models with Base.metadata
from drop_relay.models import key_cache, message  # noqa: F401

logger = logging.getLogger(__name__)


class Database:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url

        if url.startswith("sqlite"):
            # Sessions are used from FastAPI's threadpool and the sweeper thread
            self.engine = create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                url,
                echo=echo,
                pool_pre_ping=True,  # Check connections before using them
                pool_size=5,
                max_overflow=10,
                pool_recycle=3600,
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    @contextmanager
    def session(self):
        """
        Context manager for a unit of work.
        Usage:
            with database.session() as session:
                session.add(row)
        Commits on success, rolls back and re-raises on error.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self):
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables ensured", extra={"url": self.engine.url.render_as_string()})

    def drop_all(self):
        Base.metadata.drop_all(bind=self.engine)

    def ping(self):
        """Round-trip a trivial query. Raises on failure."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def dispose(self):
        self.engine.dispose()
