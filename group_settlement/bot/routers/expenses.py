from __future__ import annotations

import html
from typing import Optional

from aiogram import Bot, Router
from aiogram.enums import ChatType, ParseMode
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from group_settlement.bot.commands import (
    parse_add_args,
    parse_edit_args,
    parse_guest_name,
    parse_number,
    resolve_shares,
)
from group_settlement.bot.render import render_expenses, split_summary
from group_settlement.bot.text import format_amount, member_label
from group_settlement.bot.utils import delete_later
from group_settlement.config import settings
from group_settlement.db.models import Expense, Group, Member
from group_settlement.services.expenses import (
    cancel_expense,
    confirm_expense,
    create_expense,
    list_expenses,
    update_expense,
)
from group_settlement.services.members import add_placeholder, list_members

router = Router(name=__name__)


def _require_group(message: Message) -> bool:
    return message.chat.type in (ChatType.GROUP, ChatType.SUPERGROUP)


async def _reply(message: Message, bot: Bot, text: str) -> None:
    msg = await message.answer(text, parse_mode=ParseMode.HTML)
    delete_later(bot, chat_id=msg.chat.id, message_id=msg.message_id, delay_seconds=settings.reply_ttl_seconds)


def _describe(exp: Expense, payer: str, participants: int) -> str:
    note = f" ({html.escape(exp.note)})" if exp.note else ""
    return (
        f"<b>Expense #{exp.id}</b>{note}\n"
        f"{format_amount(exp.total_minor, exp.currency)} paid by {html.escape(payer)}, "
        f"{split_summary(exp.split_method, participants)}.\n"
        f"It counts toward balances after /confirm {exp.id}"
    )


@router.message(Command("add"))
async def add_cmd(
    message: Message,
    command: CommandObject,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
    member_db: Optional[Member] = None,
) -> None:
    if not _require_group(message) or group_db is None or member_db is None:
        return
    try:
        args = parse_add_args(command.args, currency=settings.default_currency)
        members = await list_members(session, group_id=group_db.id)
        participant_ids, strategy = resolve_shares(args.shares, members, currency=settings.default_currency)
        exp = await create_expense(
            session,
            group_id=group_db.id,
            total_minor=args.amount_minor,
            currency=settings.default_currency,
            paid_by_member_id=member_db.id,
            participant_member_ids=participant_ids,
            strategy=strategy,
            note=args.note,
            created_by_member_id=member_db.id,
            percentage_tolerance=settings.percentage_tolerance,
        )
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return

    await _reply(message, bot, _describe(exp, member_label(member_db), len(participant_ids)))


@router.message(Command("edit"))
async def edit_cmd(
    message: Message,
    command: CommandObject,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
    member_db: Optional[Member] = None,
) -> None:
    if not _require_group(message) or group_db is None or member_db is None:
        return
    try:
        expense_id, args = parse_edit_args(command.args, currency=settings.default_currency)
        members = await list_members(session, group_id=group_db.id)
        participant_ids, strategy = resolve_shares(args.shares, members, currency=settings.default_currency)
        exp = await update_expense(
            session,
            group_id=group_db.id,
            expense_id=expense_id,
            total_minor=args.amount_minor,
            participant_member_ids=participant_ids,
            strategy=strategy,
            note=args.note,
            by_member_id=member_db.id,
            percentage_tolerance=settings.percentage_tolerance,
        )
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return

    payer = {m.id: member_label(m) for m in members}.get(exp.payers[0].member_id, "?")
    await _reply(message, bot, _describe(exp, payer, len(participant_ids)))


@router.message(Command("cancel"))
async def cancel_cmd(
    message: Message,
    command: CommandObject,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
    member_db: Optional[Member] = None,
) -> None:
    if not _require_group(message) or group_db is None or member_db is None:
        return
    try:
        expense_id = parse_number(command.args, usage="/cancel <expense id>")
        exp = await cancel_expense(session, group_id=group_db.id, expense_id=expense_id, by_member_id=member_db.id)
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return
    await _reply(message, bot, f"Expense #{expense_id} cancelled ({format_amount(exp.total_minor, exp.currency)}).")


@router.message(Command("expenses"))
async def expenses_cmd(
    message: Message,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
) -> None:
    if not _require_group(message) or group_db is None:
        return
    rows = await list_expenses(session, group_id=group_db.id)
    names = {m.id: member_label(m) for m in await list_members(session, group_id=group_db.id)}
    await _reply(message, bot, render_expenses(expenses=rows, names=names))


@router.message(Command("confirm"))
async def confirm_cmd(
    message: Message,
    command: CommandObject,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
) -> None:
    if not _require_group(message) or group_db is None:
        return
    try:
        expense_id = parse_number(command.args, usage="/confirm <expense id>")
        exp = await confirm_expense(session, group_id=group_db.id, expense_id=expense_id)
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return
    await _reply(message, bot, f"Expense #{exp.id} confirmed: {format_amount(exp.total_minor, exp.currency)}.")


@router.message(Command("guest"))
async def guest_cmd(
    message: Message,
    command: CommandObject,
    bot: Bot,
    session: AsyncSession,
    group_db: Optional[Group] = None,
) -> None:
    if not _require_group(message) or group_db is None:
        return
    try:
        m = await add_placeholder(session, group_id=group_db.id, name=parse_guest_name(command.args))
    except ValueError as e:
        await _reply(message, bot, html.escape(str(e)))
        return
    await _reply(message, bot, f"Added {html.escape(member_label(m))}.")
