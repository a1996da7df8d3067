from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from group_settlement.db.models import Expense, ExpenseStatus
from group_settlement.services import ledger
from group_settlement.services.expenses import to_ledger_expense
from group_settlement.services.members import list_members, to_ledger_member

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupLedger:
    members: list[ledger.Member]
    expenses: list[ledger.Expense]
    splits: list[ledger.Split]


async def load_group_ledger(session: AsyncSession, *, group_id: int) -> GroupLedger:
    members = await list_members(session, group_id=group_id)
    rows = (
        await session.scalars(
            select(Expense)
            .where(Expense.group_id == group_id, Expense.status == ExpenseStatus.CONFIRMED)
            .options(selectinload(Expense.payers), selectinload(Expense.splits))
            .order_by(Expense.id.asc())
        )
    ).all()

    splits = [
        ledger.Split(expense_id=exp.id, member_id=s.member_id, amount_minor=s.amount_minor)
        for exp in rows
        for s in exp.splits
    ]
    return GroupLedger(
        members=[to_ledger_member(m) for m in members],
        expenses=[to_ledger_expense(exp) for exp in rows],
        splits=splits,
    )


async def compute_group_plan(
    session: AsyncSession,
    *,
    group_id: int,
    default_currency: str = "USD",
) -> ledger.SettlementPlan:
    data = await load_group_ledger(session, group_id=group_id)
    plan = ledger.plan_settlement(
        data.members,
        data.expenses,
        data.splits,
        default_currency=default_currency,
    )
    logger.debug(
        "Group %s: %d members, %d confirmed expenses, %d transfers",
        group_id,
        len(data.members),
        len(data.expenses),
        plan.transaction_count,
    )
    return plan
