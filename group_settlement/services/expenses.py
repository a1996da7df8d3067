from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from group_settlement.db.models import (
    Expense,
    ExpenseKind,
    ExpensePayer,
    ExpenseSplit,
    ExpenseStatus,
    Member,
    SplitMethod,
)
from group_settlement.services import ledger
from group_settlement.services.errors import EmptyParticipants, UnknownMember
from group_settlement.services.splits import (
    DEFAULT_PERCENTAGE_TOLERANCE,
    Equal,
    ExplicitAmounts,
    Percentages,
    SplitStrategy,
    build_splits,
)

logger = logging.getLogger(__name__)


def _split_method(strategy: SplitStrategy) -> SplitMethod:
    if isinstance(strategy, ExplicitAmounts):
        return SplitMethod.AMOUNT
    if isinstance(strategy, Percentages):
        return SplitMethod.PERCENTAGE
    return SplitMethod.EQUAL


async def _check_members(session: AsyncSession, *, group_id: int, member_ids: set[int]) -> None:
    existing = set(
        (await session.scalars(select(Member.id).where(Member.group_id == group_id, Member.id.in_(member_ids)))).all()
    )
    missing = member_ids - existing
    if missing:
        raise UnknownMember(min(missing), where="expense")


def to_ledger_expense(exp: Expense) -> ledger.Expense:
    # Participants of the engine value are the persisted splits.
    return ledger.Expense(
        expense_id=exp.id,
        total_minor=exp.total_minor,
        currency=exp.currency,
        payers=tuple(ledger.Share(p.member_id, p.amount_minor) for p in exp.payers),
        participants=tuple(ledger.Share(s.member_id, s.amount_minor) for s in exp.splits),
    )


async def create_expense(
    session: AsyncSession,
    *,
    group_id: int,
    total_minor: int,
    currency: str,
    paid_by_member_id: int,
    participant_member_ids: Sequence[int],
    strategy: Optional[SplitStrategy] = None,
    kind: ExpenseKind = ExpenseKind.EXPENSE,
    note: Optional[str] = None,
    created_by_member_id: Optional[int] = None,
    confirm: bool = False,
    percentage_tolerance: Decimal = DEFAULT_PERCENTAGE_TOLERANCE,
) -> Expense:
    participant_member_ids = [int(x) for x in participant_member_ids]
    if not participant_member_ids:
        raise EmptyParticipants()
    if strategy is None:
        strategy = Equal(len(participant_member_ids))

    # Allocate before touching the session so a bad split leaves nothing behind.
    splits = build_splits(
        None,
        participant_member_ids,
        total_minor,
        strategy,
        percentage_tolerance=percentage_tolerance,
    )

    await _check_members(session, group_id=group_id, member_ids=set(participant_member_ids) | {int(paid_by_member_id)})

    now = datetime.now(timezone.utc)
    exp = Expense(
        group_id=group_id,
        kind=kind,
        status=ExpenseStatus.CONFIRMED if confirm else ExpenseStatus.PENDING,
        split_method=_split_method(strategy),
        total_minor=total_minor,
        currency=currency.upper(),
        note=(note.strip() if note and note.strip() else None),
        created_by_member_id=created_by_member_id,
        confirmed_at=now if confirm else None,
    )
    session.add(exp)
    await session.flush()

    session.add(ExpensePayer(expense_id=exp.id, member_id=int(paid_by_member_id), amount_minor=total_minor))
    session.add_all(
        [ExpenseSplit(expense_id=exp.id, member_id=s.member_id, amount_minor=s.amount_minor) for s in splits]
    )
    await session.flush()
    logger.info(
        "Created %s expense id=%s group_id=%s total_minor=%s %s over %d members",
        exp.status.value,
        exp.id,
        group_id,
        total_minor,
        exp.currency,
        len(splits),
    )
    return exp


async def get_expense(session: AsyncSession, *, group_id: int, expense_id: int) -> Optional[Expense]:
    return await session.scalar(
        select(Expense)
        .where(Expense.group_id == group_id, Expense.id == expense_id)
        .options(selectinload(Expense.payers), selectinload(Expense.splits))
    )


async def confirm_expense(session: AsyncSession, *, group_id: int, expense_id: int) -> Expense:
    exp = await get_expense(session, group_id=group_id, expense_id=expense_id)
    if exp is None:
        raise ValueError(f"Expense #{expense_id} was not found in this group.")
    if exp.status == ExpenseStatus.CONFIRMED:
        return exp

    # Raises SplitMismatch if payer or split rows no longer add up to the total.
    to_ledger_expense(exp)

    exp.status = ExpenseStatus.CONFIRMED
    exp.confirmed_at = datetime.now(timezone.utc)
    await session.flush()
    logger.info("Confirmed expense id=%s group_id=%s", exp.id, group_id)
    return exp


async def list_expenses(session: AsyncSession, *, group_id: int, limit: int = 10) -> list[Expense]:
    """Most recent expenses first; settlement transfers are left out."""

    res = await session.scalars(
        select(Expense)
        .where(Expense.group_id == group_id, Expense.kind == ExpenseKind.EXPENSE)
        .options(selectinload(Expense.payers), selectinload(Expense.splits))
        .order_by(Expense.id.desc())
        .limit(limit)
    )
    return list(res)


async def _get_pending(
    session: AsyncSession,
    *,
    group_id: int,
    expense_id: int,
    by_member_id: Optional[int],
) -> Expense:
    exp = await get_expense(session, group_id=group_id, expense_id=expense_id)
    if exp is None:
        raise ValueError(f"Expense #{expense_id} was not found in this group.")
    if exp.status != ExpenseStatus.PENDING:
        raise ValueError(f"Expense #{expense_id} is already confirmed and can no longer change.")
    if by_member_id is not None:
        allowed = {exp.created_by_member_id} | {p.member_id for p in exp.payers}
        if by_member_id not in allowed:
            raise ValueError(f"Only the author or the payer can change expense #{expense_id}.")
    return exp


async def update_expense(
    session: AsyncSession,
    *,
    group_id: int,
    expense_id: int,
    total_minor: int,
    participant_member_ids: Sequence[int],
    strategy: Optional[SplitStrategy] = None,
    note: Optional[str] = None,
    by_member_id: Optional[int] = None,
    percentage_tolerance: Decimal = DEFAULT_PERCENTAGE_TOLERANCE,
) -> Expense:
    """
    Re-split a PENDING expense. The payer stays; amount, participants and
    split method are replaced. A note of None keeps the current note.
    """

    exp = await _get_pending(session, group_id=group_id, expense_id=expense_id, by_member_id=by_member_id)
    if len(exp.payers) != 1:
        raise ValueError(f"Expense #{expense_id} has several payers and cannot be edited here.")

    participant_member_ids = [int(x) for x in participant_member_ids]
    if not participant_member_ids:
        raise EmptyParticipants()
    if strategy is None:
        strategy = Equal(len(participant_member_ids))
    splits = build_splits(
        exp.id,
        participant_member_ids,
        total_minor,
        strategy,
        percentage_tolerance=percentage_tolerance,
    )
    payer = exp.payers[0]
    await _check_members(session, group_id=group_id, member_ids=set(participant_member_ids) | {payer.member_id})

    # Old rows go first so the (expense, member) unique key is free again.
    exp.splits.clear()
    await session.flush()
    exp.splits.extend(ExpenseSplit(member_id=s.member_id, amount_minor=s.amount_minor) for s in splits)
    payer.amount_minor = total_minor
    exp.total_minor = total_minor
    exp.split_method = _split_method(strategy)
    if note is not None:
        exp.note = note.strip() or None
    await session.flush()
    logger.info("Updated expense id=%s group_id=%s total_minor=%s", exp.id, group_id, total_minor)
    return exp


async def cancel_expense(
    session: AsyncSession,
    *,
    group_id: int,
    expense_id: int,
    by_member_id: Optional[int] = None,
) -> Expense:
    exp = await _get_pending(session, group_id=group_id, expense_id=expense_id, by_member_id=by_member_id)
    await session.delete(exp)
    await session.flush()
    logger.info("Cancelled expense id=%s group_id=%s", expense_id, group_id)
    return exp
