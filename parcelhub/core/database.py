"""
Database configuration and session management

The shipments table belongs to the surrounding order-management system;
this package only maps the columns it reads and writes.
"""
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from parcelhub.core.config import settings

Base = declarative_base()

_session_factory: Optional[async_sessionmaker] = None


def get_session_factory(database_url: Optional[str] = None) -> async_sessionmaker:
    """Create the engine lazily so importing models never opens a connection."""
    global _session_factory
    if _session_factory is None:
        engine = create_async_engine(
            database_url or settings.DATABASE_URL,
            future=True,
            pool_pre_ping=True,
        )
        _session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_db_session():
    """
    Context manager for database sessions outside a request context.

    Usage:
        async with get_db_session() as db:
            store = ShipmentStore(db)
            ...
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
