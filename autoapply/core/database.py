# autoapply/core/database.py
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from autoapply.core.config import settings
from autoapply.log.logging import logger

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def sqlalchemy_url(database_url: str) -> str:
    """Point a plain postgres URL at the async psycopg dialect."""
    for prefix in ("postgresql+psycopg://", "postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix):]
    return database_url


def get_engine() -> AsyncEngine:
    """Create the asynchronous engine on first use."""
    global _engine
    if _engine is None:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is not configured")
        logger.info("Creating database engine", environment=settings.environment)
        _engine = create_async_engine(
            sqlalchemy_url(settings.database_url),
            echo=settings.debug,
            pool_size=settings.db_pool_max_size,
            pool_recycle=settings.db_pool_max_lifetime,
        )
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,  # Prevents objects from expiring after each commit
        )
    return _session_factory


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
