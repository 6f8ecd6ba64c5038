import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from grading_service.models import Base

logger = logging.getLogger("database")


class Database:
    """Owns the engine and session factory for the lifetime of the app."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None

    def init(self) -> None:
        kwargs = {}
        if self.database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.database_url or self.database_url == "sqlite://":
                kwargs["poolclass"] = StaticPool

        self.engine = create_engine(self.database_url, **kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialized")

    def get_session_local(self) -> sessionmaker:
        if self.SessionLocal is None:
            raise RuntimeError("Database not initialized, call init() first")
        return self.SessionLocal

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database connections closed")
        self.engine = None
        self.SessionLocal = None
