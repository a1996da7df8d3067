from __future__ import annotations

import html
from typing import Optional

from aiogram import Bot, Router
from aiogram.enums import ChatType, ParseMode
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from group_settlement.bot.commands import parse_number
from group_settlement.bot.render import render_balances, render_plan
from group_settlement.bot.text import format_amount, member_label
from group_settlement.bot.utils import delete_later, safe_delete_message
from group_settlement.config import settings
from group_settlement.db.models import Group, Member
from group_settlement.services.balances import compute_group_plan
from group_settlement.services.members import list_members
from group_settlement.services.settlements import get_open_settlement, mark_settled, record_plan

router = Router(name=__name__)


def _require_group(message: Message) -> bool:
    return message.chat.type in (ChatType.GROUP, ChatType.SUPERGROUP)


async def _names(session: AsyncSession, group_id: int) -> dict[int, str]:
    return {m.id: member_label(m) for m in await list_members(session, group_id=group_id)}


async def _reply(message: Message, bot: Bot, text: str) -> None:
    await safe_delete_message(bot, chat_id=message.chat.id, message_id=message.message_id)
    msg = await message.answer(text, parse_mode=ParseMode.HTML)
    delete_later(bot, chat_id=msg.chat.id, message_id=msg.message_id, delay_seconds=settings.reply_ttl_seconds)


@router.message(Command("balance"))
async def balance_cmd(
    message: Message,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
) -> None:
    if not _require_group(message) or group_db is None:
        return
    try:
        plan = await compute_group_plan(session, group_id=group_db.id, default_currency=settings.default_currency)
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return
    names = await _names(session, group_db.id)
    await _reply(message, bot, render_balances(balances=plan.balances, names=names, currency=plan.currency))


@router.message(Command("settle"))
async def settle_cmd(
    message: Message,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
) -> None:
    if not _require_group(message) or group_db is None:
        return
    try:
        plan = await compute_group_plan(session, group_id=group_db.id, default_currency=settings.default_currency)
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return
    await record_plan(session, group_id=group_db.id, plan=plan)
    names = await _names(session, group_db.id)
    await _reply(message, bot, render_plan(plan=plan, names=names))


@router.message(Command("paid"))
async def paid_cmd(
    message: Message,
    command: CommandObject,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
    member_db: Optional[Member] = None,
) -> None:
    if not _require_group(message) or group_db is None:
        return
    try:
        n = parse_number(command.args, usage="/paid <n> (number from /settle)")
        row = await get_open_settlement(session, group_id=group_db.id, position=n)
        if row is None:
            raise ValueError(f"Payment #{n} is not open. Run /settle to see the current list.")
        s = await mark_settled(
            session,
            group_id=group_db.id,
            settlement_id=row.id,
            marked_by_member_id=member_db.id if member_db else None,
        )
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return

    names = await _names(session, group_db.id)
    await _reply(
        message,
        bot,
        f"Recorded: {html.escape(names[s.from_member_id])} → {html.escape(names[s.to_member_id])} "
        f"{format_amount(s.amount_minor, s.currency)}.",
    )
