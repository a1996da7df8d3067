from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from group_settlement.config import settings


def create_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    return create_async_engine(
        url or settings.database_url,
        echo=settings.sql_echo if echo is None else echo,
        pool_pre_ping=True,
    )


def create_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Ledger rows are read after commit when replying, so keep them loaded.
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = create_engine()
SessionMaker = create_sessionmaker(engine)
