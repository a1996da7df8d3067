from __future__ import annotations

import sqlalchemy as sa
from aiogram.types import Chat as TgChat
from aiogram.types import User as TgUser
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from group_settlement.db.models import Group, Member
from group_settlement.services import ledger

PLACEHOLDER_NAME_MAX = 64


async def ensure_group(session: AsyncSession, *, tg_chat: TgChat) -> Group:
    insert_stmt = insert(Group).values(
        tg_chat_id=tg_chat.id,
        title=tg_chat.title,
    )
    stmt = (
        insert_stmt.on_conflict_do_update(
            index_elements=[Group.tg_chat_id],
            set_={"title": sa.func.coalesce(insert_stmt.excluded.title, Group.title)},
        )
        .returning(Group)
    )
    res = await session.execute(stmt)
    return res.scalar_one()


async def upsert_member(session: AsyncSession, *, group: Group, user: TgUser) -> Member:
    insert_stmt = insert(Member).values(
        group_id=group.id,
        tg_user_id=user.id,
        username=user.username.lower() if user.username else None,
        first_name=user.first_name or None,
    )
    stmt = (
        insert_stmt.on_conflict_do_update(
            index_elements=[Member.group_id, Member.tg_user_id],
            set_={
                "username": insert_stmt.excluded.username,
                "first_name": insert_stmt.excluded.first_name,
            },
        )
        .returning(Member)
    )
    res = await session.execute(stmt)
    return res.scalar_one()


async def add_placeholder(session: AsyncSession, *, group_id: int, name: str) -> Member:
    clean = " ".join(name.split())
    if not clean:
        raise ValueError("Placeholder name must not be empty.")
    if len(clean) > PLACEHOLDER_NAME_MAX:
        raise ValueError(f"Placeholder name must be at most {PLACEHOLDER_NAME_MAX} characters.")

    existing = await session.scalar(
        select(Member.id).where(
            Member.group_id == group_id,
            func.lower(Member.placeholder_name) == clean.lower(),
        )
    )
    if existing is not None:
        raise ValueError(f"'{clean}' is already a member of this group.")

    m = Member(group_id=group_id, placeholder_name=clean)
    session.add(m)
    await session.flush()
    return m


async def list_members(session: AsyncSession, *, group_id: int) -> list[Member]:
    # Stable roster order: it decides remainder cents and settlement tie-breaks.
    res = await session.scalars(select(Member).where(Member.group_id == group_id).order_by(Member.id.asc()))
    return list(res)


def to_ledger_member(m: Member) -> ledger.Member:
    return ledger.member_from_fields(m.id, m.tg_user_id, m.placeholder_name)
