from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from group_settlement.db.models import ExpenseKind, Settlement
from group_settlement.services import ledger
from group_settlement.services.expenses import create_expense

logger = logging.getLogger(__name__)


async def record_plan(session: AsyncSession, *, group_id: int, plan: ledger.SettlementPlan) -> list[Settlement]:
    """Replace the group's open settlements with the transfers of `plan`."""

    await session.execute(delete(Settlement).where(Settlement.group_id == group_id, Settlement.settled.is_(False)))
    rows = [
        Settlement(
            group_id=group_id,
            from_member_id=t.from_member_id,
            to_member_id=t.to_member_id,
            amount_minor=t.amount_minor,
            position=n,
            currency=t.currency,
            settled=False,
        )
        for n, t in enumerate(plan.transfers, start=1)
    ]
    session.add_all(rows)
    await session.flush()
    return rows


async def list_open_settlements(session: AsyncSession, *, group_id: int) -> list[Settlement]:
    res = await session.scalars(
        select(Settlement)
        .where(Settlement.group_id == group_id, Settlement.settled.is_(False))
        .order_by(Settlement.position.asc())
    )
    return list(res)


async def get_open_settlement(session: AsyncSession, *, group_id: int, position: int) -> Optional[Settlement]:
    """Open settlement by the number /settle showed; numbers do not shift as others are paid."""

    return await session.scalar(
        select(Settlement).where(
            Settlement.group_id == group_id,
            Settlement.position == position,
            Settlement.settled.is_(False),
        )
    )


async def mark_settled(
    session: AsyncSession,
    *,
    group_id: int,
    settlement_id: int,
    marked_by_member_id: Optional[int] = None,
) -> Settlement:
    s = await session.scalar(
        select(Settlement).where(Settlement.group_id == group_id, Settlement.id == settlement_id)
    )
    if s is None:
        raise ValueError(f"Settlement #{settlement_id} was not found in this group.")
    if s.settled:
        raise ValueError("This payment is already marked as settled.")

    # The debtor pays the full amount and the creditor is its only participant,
    # which moves both balances toward zero by `amount_minor`.
    transfer = await create_expense(
        session,
        group_id=group_id,
        total_minor=s.amount_minor,
        currency=s.currency,
        paid_by_member_id=s.from_member_id,
        participant_member_ids=[s.to_member_id],
        kind=ExpenseKind.TRANSFER,
        note="Settlement payment",
        created_by_member_id=marked_by_member_id,
        confirm=True,
    )
    s.settled = True
    s.settled_at = datetime.now(timezone.utc)
    s.transfer_expense_id = transfer.id
    await session.flush()
    logger.info("Settlement id=%s group_id=%s marked settled (expense id=%s)", s.id, group_id, transfer.id)
    return s
