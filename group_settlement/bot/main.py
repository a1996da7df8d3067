from __future__ import annotations

import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramUnauthorizedError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand

from group_settlement.bot.middlewares import DbSessionMiddleware, UpsertGroupMemberMiddleware
from group_settlement.bot.routers import all_routers
from group_settlement.config import settings
from group_settlement.db.session import SessionMaker, engine
from group_settlement.logging import configure_logging

logger = logging.getLogger(__name__)

COMMANDS = [
    BotCommand(command="add", description="Add an expense you paid (equal, @who:amount or @who:percent%)"),
    BotCommand(command="expenses", description="List recent expenses"),
    BotCommand(command="edit", description="Change a pending expense"),
    BotCommand(command="cancel", description="Delete a pending expense"),
    BotCommand(command="confirm", description="Confirm a pending expense"),
    BotCommand(command="guest", description="Add a member who is not on Telegram"),
    BotCommand(command="balance", description="Show who owes and who is owed"),
    BotCommand(command="settle", description="Suggest the payments that settle the group"),
    BotCommand(command="paid", description="Mark a suggested payment as done"),
]


async def main() -> None:
    configure_logging(settings.log_level)

    bot = Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    try:
        try:
            me = await bot.get_me()
        except TelegramUnauthorizedError as e:
            logger.error("Telegram Unauthorized. Check BOT_TOKEN in .env (BotFather token). %s", e)
            raise

        dp = Dispatcher(storage=MemoryStorage())
        dp.update.middleware(DbSessionMiddleware(SessionMaker))
        dp.message.middleware(UpsertGroupMemberMiddleware())

        for r in all_routers():
            dp.include_router(r)

        await bot.set_my_commands(COMMANDS)
        logger.info("Starting bot as @%s (default currency %s)", me.username, settings.default_currency)
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        await bot.session.close()
        await engine.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
