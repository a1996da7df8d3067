from __future__ import annotations

import html
from typing import Hashable, Mapping, Sequence

from group_settlement.db.models import Expense, SplitMethod
from group_settlement.services.ledger import BalanceEntry, SettlementPlan
from group_settlement.services.money import format_minor

MAX_LINES = 30
MESSAGE_LIMIT = 4096


def _esc(s: str) -> str:
    return html.escape(s, quote=False)


def _name(names: Mapping[Hashable, str], member_id: Hashable) -> str:
    return names.get(member_id, str(member_id))


def _more(total: int) -> list[str]:
    hidden = total - MAX_LINES
    return [f"…and {hidden} more"] if hidden > 0 else []


def render_balances(
    *,
    balances: Sequence[BalanceEntry],
    names: Mapping[Hashable, str],
    currency: str,
) -> str:
    lines: list[str] = []
    for b in balances[:MAX_LINES]:
        name = _name(names, b.member_id)
        bal = b.balance_minor
        if bal > 0:
            lines.append(f"{name}: gets back {format_minor(bal, currency)} {currency}")
        elif bal < 0:
            lines.append(f"{name}: owes {format_minor(-bal, currency)} {currency}")
        else:
            lines.append(f"{name}: settled up")
    if not lines:
        lines = ["No balances yet."]
    lines.extend(_more(len(balances)))

    text = "<b>Balances</b>\n<pre>" + _esc("\n".join(lines)) + "</pre>"
    return text[:MESSAGE_LIMIT]


def render_plan(
    *,
    plan: SettlementPlan,
    names: Mapping[Hashable, str],
) -> str:
    """Suggested payments, numbered so `/paid <n>` can refer to them."""

    lines: list[str] = []
    for n, t in enumerate(plan.transfers[:MAX_LINES], start=1):
        lines.append(
            f"{n}. {_name(names, t.from_member_id)} → {_name(names, t.to_member_id)}: "
            f"{format_minor(t.amount_minor, t.currency)} {t.currency}"
        )
    if not lines:
        return "<b>Suggested payments</b>\nEveryone is settled up."
    lines.extend(_more(len(plan.transfers)))

    footer = (
        f"{plan.transaction_count} payment(s), "
        f"{format_minor(plan.total_minor, plan.currency)} {plan.currency} in total.\n"
        "Mark one as paid with /paid &lt;n&gt;."
    )
    text = "<b>Suggested payments</b>\n<pre>" + _esc("\n".join(lines)) + "</pre>\n" + footer
    return text[:MESSAGE_LIMIT]


_METHOD_TEXT = {
    SplitMethod.EQUAL: "equally",
    SplitMethod.AMOUNT: "by amount",
    SplitMethod.PERCENTAGE: "by percentage",
}


def split_summary(method: SplitMethod, participants: int) -> str:
    return f"split {_METHOD_TEXT[method]} among {participants}"


def render_expenses(
    *,
    expenses: Sequence[Expense],
    names: Mapping[Hashable, str],
) -> str:
    """Recent expenses, newest first. Pending ones can still be edited or cancelled."""

    lines: list[str] = []
    for e in expenses[:MAX_LINES]:
        payers = ", ".join(_name(names, p.member_id) for p in e.payers)
        line = (
            f"#{e.id} {e.status.value.lower()}: {format_minor(e.total_minor, e.currency)} {e.currency} "
            f"paid by {payers}, {split_summary(e.split_method, len(e.splits))}"
        )
        if e.note:
            line += f" ({e.note})"
        lines.append(line)
    if not lines:
        return "<b>Expenses</b>\nNo expenses yet. Add one with /add &lt;amount&gt;."
    lines.extend(_more(len(expenses)))

    text = (
        "<b>Expenses</b>\n<pre>"
        + _esc("\n".join(lines))
        + "</pre>\n/confirm, /edit or /cancel a pending one by its #id."
    )
    return text[:MESSAGE_LIMIT]
