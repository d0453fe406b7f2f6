"""
This module contains the database setup and session management for the booking service.
"""
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from .config import settings


class Base(DeclarativeBase):
    pass


def _engine_options(url: str) -> dict:
    # Celery tasks open their own event loop; pooled sqlite connections
    # must not outlive the loop that created them.
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {"pool_pre_ping": True}


engine = create_async_engine(settings.database_url, echo=settings.database_echo,
                             **_engine_options(settings.database_url))

Session = async_sessionmaker(engine, expire_on_commit=False)


async def get_db_session() -> AsyncGenerator[AsyncSession | Any, Any]:
    """
    Dependency that provides a database session.
    """
    async with Session() as session:
        yield session


async def create_db_and_tables():
    """
    Creates the database and tables.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db_and_tables():
    """
    Drops every table known to the metadata.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
