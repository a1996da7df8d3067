from __future__ import annotations

from aiogram import Router

from group_settlement.bot.routers.expenses import router as expenses_router
from group_settlement.bot.routers.public import router as public_router


def all_routers() -> list[Router]:
    return [
        expenses_router,
        public_router,
    ]
