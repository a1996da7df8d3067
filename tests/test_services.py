"""
Persistence services against a real (SQLite) session.

Every `async with Session()` block is one bot update; results are committed
before the next block reads them.
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select, update

from group_settlement.db.models import (
    Expense,
    ExpenseKind,
    ExpenseSplit,
    ExpenseStatus,
    Group,
    Member,
    Settlement,
    SplitMethod,
)
from group_settlement.services.balances import compute_group_plan, load_group_ledger
from group_settlement.services.errors import SplitMismatch, UnknownMember
from group_settlement.services.expenses import (
    cancel_expense,
    confirm_expense,
    create_expense,
    get_expense,
    list_expenses,
    update_expense,
)
from group_settlement.services.ledger import Placeholder, Registered, Transfer
from group_settlement.services.members import add_placeholder, list_members, to_ledger_member
from group_settlement.services.settlements import (
    get_open_settlement,
    list_open_settlements,
    mark_settled,
    record_plan,
)
from group_settlement.services.splits import ExplicitAmounts, Percentages


async def _seed(Session):
    async with Session() as session:
        group = Group(tg_chat_id=-1001, title="Trip")
        session.add(group)
        await session.flush()
        alice = Member(group_id=group.id, tg_user_id=1, username="alice")
        bob = Member(group_id=group.id, tg_user_id=2, first_name="Bob")
        session.add_all([alice, bob])
        await session.flush()
        carol = await add_placeholder(session, group_id=group.id, name="  Carol ")
        await session.commit()
        return group.id, alice.id, bob.id, carol.id


async def _count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


async def _add(Session, gid, payer, participants, total, **kw) -> Expense:
    async with Session() as session:
        exp = await create_expense(
            session,
            group_id=gid,
            total_minor=total,
            currency="USD",
            paid_by_member_id=payer,
            participant_member_ids=participants,
            created_by_member_id=payer,
            **kw,
        )
        await session.commit()
        return exp


# ── Members ────────────────────────────────────────────────────────────────


def test_roster_is_ordered_and_converted_to_ledger_members(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        async with Session() as session:
            members = await list_members(session, group_id=gid)
            return [to_ledger_member(m) for m in members], (a, b, c)

    ledger_members, (a, b, c) = run_db(scenario)
    assert ledger_members == [
        Registered(member_id=a, user_id=1),
        Registered(member_id=b, user_id=2),
        Placeholder(member_id=c, name="Carol"),
    ]


@pytest.mark.parametrize("name,message", [("carol", "already"), ("   ", "empty"), ("x" * 65, "at most")])
def test_add_placeholder_rejects(run_db, name, message):
    async def scenario(Session):
        gid, *_ = await _seed(Session)
        async with Session() as session:
            with pytest.raises(ValueError, match=message):
                await add_placeholder(session, group_id=gid, name=name)

    run_db(scenario)


# ── Expenses ───────────────────────────────────────────────────────────────


def test_create_expense_writes_nothing_when_rejected(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        async with Session() as session:
            with pytest.raises(SplitMismatch):
                await create_expense(
                    session,
                    group_id=gid,
                    total_minor=1000,
                    currency="USD",
                    paid_by_member_id=a,
                    participant_member_ids=[a, b],
                    strategy=ExplicitAmounts([600, 300]),
                )
            with pytest.raises(UnknownMember):
                await create_expense(
                    session,
                    group_id=gid,
                    total_minor=1000,
                    currency="USD",
                    paid_by_member_id=a,
                    participant_member_ids=[a, 999],
                )
            await session.commit()
        async with Session() as session:
            return await _count(session, Expense), await _count(session, ExpenseSplit)

    assert run_db(scenario) == (0, 0)


def test_create_expense_stores_payer_and_splits_as_pending(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        created = await _add(Session, gid, a, [a, b, c], 1000, note=" dinner ")
        async with Session() as session:
            exp = await get_expense(session, group_id=gid, expense_id=created.id)
            return (
                exp.status,
                exp.split_method,
                exp.note,
                [(p.member_id, p.amount_minor) for p in exp.payers],
                sorted(s.amount_minor for s in exp.splits),
            )

    status, method, note, payers, shares = run_db(scenario)
    assert status == ExpenseStatus.PENDING
    assert method == SplitMethod.EQUAL
    assert note == "dinner"
    assert payers[0][1] == 1000
    assert shares == [333, 333, 334]


def test_confirm_expense_is_idempotent(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        exp = await _add(Session, gid, a, [a, b, c], 1000)
        async with Session() as session:
            await confirm_expense(session, group_id=gid, expense_id=exp.id)
            await session.commit()
        async with Session() as session:
            again = await confirm_expense(session, group_id=gid, expense_id=exp.id)
            await session.commit()
            return again.status, again.confirmed_at is not None

    assert run_db(scenario) == (ExpenseStatus.CONFIRMED, True)


def test_confirm_expense_rechecks_split_sums(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        exp = await _add(Session, gid, a, [a, b], 1000)
        async with Session() as session:
            await session.execute(
                update(ExpenseSplit)
                .where(ExpenseSplit.expense_id == exp.id, ExpenseSplit.member_id == b)
                .values(amount_minor=1)
            )
            await session.commit()
        async with Session() as session:
            with pytest.raises(SplitMismatch):
                await confirm_expense(session, group_id=gid, expense_id=exp.id)
        async with Session() as session:
            return (await get_expense(session, group_id=gid, expense_id=exp.id)).status

    assert run_db(scenario) == ExpenseStatus.PENDING


def test_confirm_unknown_expense(run_db):
    async def scenario(Session):
        gid, *_ = await _seed(Session)
        async with Session() as session:
            with pytest.raises(ValueError, match="not found"):
                await confirm_expense(session, group_id=gid, expense_id=404)

    run_db(scenario)


def test_update_pending_expense_replaces_amount_and_splits(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        exp = await _add(Session, gid, a, [a, b, c], 1000)
        async with Session() as session:
            await update_expense(
                session,
                group_id=gid,
                expense_id=exp.id,
                total_minor=3000,
                participant_member_ids=[b, c],
                strategy=Percentages(["40", "60"]),
                note="hotel",
                by_member_id=a,
            )
            await session.commit()
        async with Session() as session:
            updated = await get_expense(session, group_id=gid, expense_id=exp.id)
            return (
                updated.total_minor,
                updated.split_method,
                updated.note,
                [p.amount_minor for p in updated.payers],
                {s.member_id: s.amount_minor for s in updated.splits},
                (b, c),
            )

    total, method, note, payers, splits, (b, c) = run_db(scenario)
    assert total == 3000
    assert method == SplitMethod.PERCENTAGE
    assert note == "hotel"
    assert payers == [3000]
    assert splits == {b: 1200, c: 1800}


def test_update_rejects_other_members_and_confirmed_expenses(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        exp = await _add(Session, gid, a, [a, b], 1000)
        async with Session() as session:
            with pytest.raises(ValueError, match="Only the author or the payer"):
                await update_expense(
                    session,
                    group_id=gid,
                    expense_id=exp.id,
                    total_minor=500,
                    participant_member_ids=[a, b],
                    by_member_id=c,
                )
            await confirm_expense(session, group_id=gid, expense_id=exp.id)
            await session.commit()
        async with Session() as session:
            with pytest.raises(ValueError, match="already confirmed"):
                await update_expense(
                    session,
                    group_id=gid,
                    expense_id=exp.id,
                    total_minor=500,
                    participant_member_ids=[a, b],
                )
            with pytest.raises(ValueError, match="already confirmed"):
                await cancel_expense(session, group_id=gid, expense_id=exp.id)

    run_db(scenario)


def test_cancel_pending_expense_removes_its_rows(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        exp = await _add(Session, gid, a, [a, b, c], 1000)
        async with Session() as session:
            await cancel_expense(session, group_id=gid, expense_id=exp.id, by_member_id=a)
            await session.commit()
        async with Session() as session:
            return await _count(session, Expense), await _count(session, ExpenseSplit)

    assert run_db(scenario) == (0, 0)


def test_list_expenses_newest_first_without_transfers(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        e1 = await _add(Session, gid, a, [a, b], 1000)
        e2 = await _add(Session, gid, b, [a, b], 500)
        await _add(Session, gid, b, [a], 500, kind=ExpenseKind.TRANSFER, confirm=True)
        async with Session() as session:
            rows = await list_expenses(session, group_id=gid)
            return [e.id for e in rows], [e2.id, e1.id]

    listed, expected = run_db(scenario)
    assert listed == expected


# ── Balances and settlements ───────────────────────────────────────────────


def test_ledger_only_includes_confirmed_expenses(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        confirmed = await _add(Session, gid, a, [a, b, c], 3000, confirm=True)
        await _add(Session, gid, b, [a, b], 900)
        async with Session() as session:
            data = await load_group_ledger(session, group_id=gid)
            plan = await compute_group_plan(session, group_id=gid)
            return data, plan, confirmed.id, (a, b, c)

    data, plan, confirmed_id, (a, b, c) = run_db(scenario)
    assert [e.expense_id for e in data.expenses] == [confirmed_id]
    assert {s.expense_id for s in data.splits} == {confirmed_id}
    assert {e.member_id: e.balance_minor for e in plan.balances} == {a: 2000, b: -1000, c: -1000}


def test_paid_settlements_keep_their_numbers_and_clear_balances(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        await _add(Session, gid, a, [a, b, c], 3000, confirm=True)

        async with Session() as session:
            plan = await compute_group_plan(session, group_id=gid)
            rows = await record_plan(session, group_id=gid, plan=plan)
            await session.commit()
        assert [(r.position, r.from_member_id, r.to_member_id, r.amount_minor) for r in rows] == [
            (1, b, a, 1000),
            (2, c, a, 1000),
        ]

        async with Session() as session:
            await mark_settled(session, group_id=gid, settlement_id=rows[0].id, marked_by_member_id=b)
            await session.commit()

        async with Session() as session:
            with pytest.raises(ValueError, match="already"):
                await mark_settled(session, group_id=gid, settlement_id=rows[0].id)
            assert await get_open_settlement(session, group_id=gid, position=1) is None
            second = await get_open_settlement(session, group_id=gid, position=2)
            assert second.id == rows[1].id
            await mark_settled(session, group_id=gid, settlement_id=second.id)
            await session.commit()

        async with Session() as session:
            return await compute_group_plan(session, group_id=gid)

    plan = run_db(scenario)
    assert plan.transfers == []
    assert all(e.balance_minor == 0 for e in plan.balances)


def test_record_plan_replaces_only_open_settlements(run_db):
    async def scenario(Session):
        gid, a, b, c = await _seed(Session)
        await _add(Session, gid, a, [a, b, c], 3000, confirm=True)

        async with Session() as session:
            plan = await compute_group_plan(session, group_id=gid)
            await record_plan(session, group_id=gid, plan=plan)
            rows = await record_plan(session, group_id=gid, plan=plan)
            await session.commit()
        async with Session() as session:
            assert await _count(session, Settlement) == 2
            await mark_settled(session, group_id=gid, settlement_id=rows[0].id)
            await session.commit()

        async with Session() as session:
            plan = await compute_group_plan(session, group_id=gid)
            await record_plan(session, group_id=gid, plan=plan)
            await session.commit()

        async with Session() as session:
            open_rows = await list_open_settlements(session, group_id=gid)
            return (
                plan.transfers,
                [(s.position, s.from_member_id, s.to_member_id, s.amount_minor) for s in open_rows],
                await _count(session, Settlement),
                (a, c),
            )

    transfers, open_rows, total_rows, (a, c) = run_db(scenario)
    assert transfers == [Transfer(from_member_id=c, to_member_id=a, amount_minor=1000, currency="USD")]
    assert open_rows == [(1, c, a, 1000)]
    assert total_rows == 2
