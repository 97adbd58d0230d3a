import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL, DB_POOL_RECYCLE, DB_POOL_SIZE

logger = logging.getLogger(__name__)


def create_db_engine(url: str, **kwargs):
    """Engine for the portal database; SQLite (local dev, tests) skips queue pool sizing"""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_size", DB_POOL_SIZE)
        kwargs.setdefault("pool_recycle", DB_POOL_RECYCLE)
    return create_engine(url, **kwargs)


engine = create_db_engine(DATABASE_URL)
logger.info(f"Database engine created ({engine.dialect.name})")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
