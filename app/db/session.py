from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.db.base import Base


def build_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # request threads share the pool
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def build_session_factories(engine: Engine) -> tuple[sessionmaker, sessionmaker]:
    """Return (request sessions, serializable sessions) bound to ``engine``."""
    request_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    serializable_factory = sessionmaker(
        bind=engine.execution_options(isolation_level="SERIALIZABLE"),
        autoflush=False,
        expire_on_commit=False,
    )
    return request_factory, serializable_factory


engine = build_engine(settings.DATABASE_URL)
SessionLocal, SerializableSessionLocal = build_session_factories(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all(bind: Engine = engine) -> None:
    # models must be imported so their tables are registered on Base
    from app.models import (  # noqa: F401
        crypto_balance,
        crypto_conversion,
        exchange_rate,
        transaction,
        user,
        wallet,
    )

    Base.metadata.create_all(bind=bind)
