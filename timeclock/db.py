from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from timeclock.settings import get_settings


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, *, statement_timeout_ms: int | None = None):
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    engine_ = create_engine(database_url, pool_pre_ping=True)
    if statement_timeout_ms:

        @event.listens_for(engine_, "connect")
        def _set_statement_timeout(dbapi_connection, _record):  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute(f"SET statement_timeout = {int(statement_timeout_ms)}")
            cursor.close()

    return engine_


_settings = get_settings()
engine = build_engine(_settings.database_url, statement_timeout_ms=_settings.db_statement_timeout_ms)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
