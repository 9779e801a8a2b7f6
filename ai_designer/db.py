from __future__ import annotations

from collections.abc import Iterator
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ai_designer.config import settings
from ai_designer.models import Base


def create_db_engine(url: str) -> Engine:
    """Engine for the designer tables; SQLite connections are shared across the threadpool."""

    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, future=True, pool_pre_ping=True, connect_args=connect_args)


engine: Engine = create_db_engine(settings.AI_DESIGNER_DB_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def init_db(bind: Optional[Engine] = None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def get_session() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
