from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from receipt_reconciler.core.config import settings


def build_engine(database_url: str) -> Engine:
    connect_args: dict = {}
    if make_url(database_url).drivername.startswith("sqlite"):
        # Cycles run on celery and API threads that share the engine.
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(settings.database_url)

# Receipts outlive their session in the pipeline and sync logs.
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def db_session() -> Generator[Session, None, None]:
    with SessionLocal() as session:
        yield session
