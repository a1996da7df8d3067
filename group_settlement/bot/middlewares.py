from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.enums import ChatType
from aiogram.types import Message, TelegramObject
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from group_settlement.services.members import ensure_group, upsert_member

logger = logging.getLogger(__name__)


class DbSessionMiddleware(BaseMiddleware):
    """One session per update: committed when the handler returns, rolled back if it raises."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._sessionmaker = sessionmaker

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        async with self._sessionmaker() as session:
            data["session"] = session
            try:
                result = await handler(event, data)
                await session.commit()
                return result
            except Exception:
                await session.rollback()
                logger.exception("Update handling failed; transaction rolled back")
                raise


class UpsertGroupMemberMiddleware(BaseMiddleware):
    """Registers the chat as a group and the sender as a registered member."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        if not isinstance(event, Message) or event.chat.type not in (ChatType.GROUP, ChatType.SUPERGROUP):
            return await handler(event, data)

        tg_user = event.from_user
        # Anonymous admins and channel posts have no person behind them.
        if tg_user is None or tg_user.is_bot or event.sender_chat is not None:
            return await handler(event, data)

        session: AsyncSession = data["session"]
        group = await ensure_group(session, tg_chat=event.chat)
        data["group_db"] = group
        data["member_db"] = await upsert_member(session, group=group, user=tg_user)
        return await handler(event, data)
