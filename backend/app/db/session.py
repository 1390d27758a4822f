from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.core.config import settings
from app.db.base import Base


def make_engine(dsn: str) -> Engine:
    connect_args = {}
    if dsn.startswith("sqlite"):
        # Celery prefork children and FastAPI's threadpool share the engine.
        connect_args = {"check_same_thread": False}
    return create_engine(dsn, pool_pre_ping=True, connect_args=connect_args)


engine = make_engine(settings.postgres_dsn)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind: Engine | None = None) -> None:
    Base.metadata.create_all(bind=bind or engine)
