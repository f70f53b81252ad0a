"""SQLAlchemy engine, session factory and declarative base."""
from __future__ import annotations

import logging
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    pass


def _configure_sqlite(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, which lets two writers read
    # the same snapshot. Take the write lock when the transaction starts instead.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": settings.sqlite_busy_timeout}
    new_engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
    if new_engine.dialect.name == "sqlite":
        _configure_sqlite(new_engine)
    logger.info("Database engine created for dialect %s", new_engine.dialect.name)
    return new_engine


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind: Engine | None = None) -> None:
    """Create all tables together with the overlap guard for the active dialect."""

    from . import models  # noqa: F401  (registers mappers and DDL listeners)

    Base.metadata.create_all(bind=bind or engine)
