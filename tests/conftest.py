from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from group_settlement.db.models import Base


@pytest.fixture
def run_db(tmp_path):
    """
    Run `scenario(SessionMaker)` against a fresh SQLite database.

    Each `async with SessionMaker() as session` block stands for one bot
    update: commit it before the next block reads the result.
    """

    url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"

    def run(scenario):
        async def main():
            engine = create_async_engine(url)
            try:
                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
                return await scenario(async_sessionmaker(engine, expire_on_commit=False))
            finally:
                await engine.dispose()

        return asyncio.run(main())

    return run
