from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from app.core.config import settings

from typing import Optional


Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    return create_async_engine(
        url or settings.database.url,
        echo=settings.database.echo,
        pool_pre_ping=True,
    )


def get_engine() -> AsyncEngine:
    """Process-wide engine, created on first use so imports never need a driver."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker


async def init_models(engine: Optional[AsyncEngine] = None) -> None:
    """Create missing tables for every model registered on Base."""
    import app.core.db.schemas  # noqa: F401

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None

