import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeout
from sqlalchemy.orm import declarative_base, sessionmaker

from snaplink.errors import StoreError, StoreTimeout

# Explicitly load .env from project root (parent of snaplink/)
ENV_PATH = Path(__file__).parent.parent / ".env"
load_dotenv(ENV_PATH)

Base = declarative_base()

TIMEOUT_MARKERS = ("timeout", "timed out", "statement timeout", "database is locked")


def database_url() -> str:
    environment = os.getenv("ENVIRONMENT", "dev")
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    if environment == "prod":
        raise RuntimeError("DATABASE_URL must be set in production")
    # SQLite for local dev, stored next to the package folder
    return f"sqlite:///{Path(__file__).parent.parent / 'snaplink_dev.db'}"


def build_engine(url: str | None = None) -> Engine:
    url = url or database_url()
    timeout = float(os.getenv("DB_TIMEOUT_SECONDS", 5))
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            # needed for SQLite + FastAPI; timeout is the busy-wait on a locked file
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=int(os.getenv("DB_POOL_SIZE", 5)),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", 0)),
        pool_timeout=timeout,
        pool_recycle=1800,
        connect_args={
            "connect_timeout": int(timeout),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        },
    )


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    from snaplink import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def translate_error(exc: SQLAlchemyError) -> StoreError:
    if isinstance(exc, PoolTimeout):
        return StoreTimeout()
    if isinstance(exc, OperationalError) and any(m in str(exc.orig).lower() for m in TIMEOUT_MARKERS):
        return StoreTimeout()
    return StoreError()


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
