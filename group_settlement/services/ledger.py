from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Hashable, Iterable, Mapping, Optional, Sequence, Union

from group_settlement.services.errors import (
    CurrencyMismatch,
    EmptyParticipants,
    InvalidAmount,
    SplitMismatch,
    UnbalancedInput,
    UnknownMember,
)

logger = logging.getLogger(__name__)

MemberId = Hashable


@dataclass(frozen=True)
class Registered:
    member_id: MemberId
    user_id: int


@dataclass(frozen=True)
class Placeholder:
    member_id: MemberId
    name: str


Member = Union[Registered, Placeholder]


def member_from_fields(member_id: MemberId, user_id: Optional[int], placeholder_name: Optional[str]) -> Member:
    # Storage keeps two nullable columns; exactly one of them must be set.
    if user_id is not None and placeholder_name is not None:
        raise ValueError(f"Member {member_id!r} has both a user and a placeholder name.")
    if user_id is not None:
        return Registered(member_id=member_id, user_id=user_id)
    if placeholder_name is not None:
        return Placeholder(member_id=member_id, name=placeholder_name)
    raise ValueError(f"Member {member_id!r} has neither a user nor a placeholder name.")


@dataclass(frozen=True)
class Share:
    member_id: MemberId
    amount_minor: int


@dataclass(frozen=True)
class Expense:
    expense_id: Hashable
    total_minor: int
    currency: str
    payers: tuple[Share, ...]
    participants: tuple[Share, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "payers", tuple(self.payers))
        object.__setattr__(self, "participants", tuple(self.participants))
        if not _is_minor(self.total_minor) or self.total_minor <= 0:
            raise InvalidAmount(self.total_minor)
        if not self.payers:
            raise EmptyParticipants("payers")
        if not self.participants:
            raise EmptyParticipants("participants")
        for label, shares in (("payers", self.payers), ("participants", self.participants)):
            for s in shares:
                if not _is_minor(s.amount_minor):
                    raise InvalidAmount(s.amount_minor, "shares must be integers of minor units")
            actual = sum(s.amount_minor for s in shares)
            if actual != self.total_minor:
                raise SplitMismatch(expected=self.total_minor, actual=actual, what=f"{label} of expense {self.expense_id}")


@dataclass(frozen=True)
class Split:
    expense_id: Hashable
    member_id: MemberId
    amount_minor: int


@dataclass(frozen=True)
class BalanceEntry:
    member_id: MemberId
    paid_minor: int
    owed_minor: int

    @property
    def balance_minor(self) -> int:
        # positive is owed money, negative owes
        return self.paid_minor - self.owed_minor


@dataclass(frozen=True)
class Transfer:
    from_member_id: MemberId  # debtor
    to_member_id: MemberId  # creditor
    amount_minor: int
    currency: str = "USD"


@dataclass(frozen=True)
class SettlementPlan:
    currency: str
    balances: list[BalanceEntry] = field(default_factory=list)
    transfers: list[Transfer] = field(default_factory=list)

    @property
    def total_minor(self) -> int:
        return sum(t.amount_minor for t in self.transfers)

    @property
    def transaction_count(self) -> int:
        return len(self.transfers)


def _is_minor(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def aggregate_entries(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    splits: Iterable[Split],
) -> list[BalanceEntry]:
    """
    Net paid/owed per roster member, in roster order.

    Only expenses passed in are counted; splits that belong to any other
    expense (e.g. one still pending) are skipped. Every counted expense must
    have splits adding up to its total, so the balances of a consistent group
    always sum to zero.
    """

    paid: dict[MemberId, int] = {}
    for m in members:
        if m.member_id in paid:
            raise ValueError(f"Member {m.member_id!r} appears twice in the roster.")
        paid[m.member_id] = 0
    owed: dict[MemberId, int] = dict.fromkeys(paid, 0)

    totals: dict[Hashable, int] = {}
    for exp in expenses:
        totals[exp.expense_id] = exp.total_minor
        for p in exp.payers:
            if p.member_id not in paid:
                raise UnknownMember(p.member_id, where="payer")
            paid[p.member_id] += p.amount_minor

    split_sums: dict[Hashable, int] = defaultdict(int)
    skipped = 0
    for s in splits:
        if s.expense_id not in totals:
            skipped += 1
            continue
        if s.member_id not in owed:
            raise UnknownMember(s.member_id, where="split")
        if not _is_minor(s.amount_minor):
            raise InvalidAmount(s.amount_minor, "split amounts must be integers of minor units")
        owed[s.member_id] += s.amount_minor
        split_sums[s.expense_id] += s.amount_minor

    for expense_id, total in totals.items():
        actual = split_sums.get(expense_id, 0)
        if actual != total:
            raise SplitMismatch(expected=total, actual=actual, what=f"splits of expense {expense_id}")

    logger.debug(
        "Aggregated %d members over %d expenses (%d splits skipped)",
        len(paid),
        len(totals),
        skipped,
    )
    return [BalanceEntry(member_id=mid, paid_minor=paid[mid], owed_minor=owed[mid]) for mid in paid]


def aggregate(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    splits: Iterable[Split],
) -> dict[MemberId, int]:
    return {e.member_id: e.balance_minor for e in aggregate_entries(members, expenses, splits)}


def simplify(balances: Mapping[MemberId, int], *, currency: str = "USD") -> list[Transfer]:
    """
    Greedy settlement: repeatedly pay the largest creditor from the largest debtor.

    Ties are broken by the mapping's iteration order. Produces at most N-1
    transfers for N non-zero balances. This is the usual minimum-cash-flow
    heuristic; it is not guaranteed to find the smallest possible number of
    transfers (that is a subset-partition search).
    """

    for mid, bal in balances.items():
        if not _is_minor(bal):
            raise InvalidAmount(bal, f"balance of member {mid!r} must be an integer of minor units")
    total = sum(balances.values())
    if total != 0:
        raise UnbalancedInput(total)

    creditors: list[list] = []  # [member_id, to_receive, order]
    debtors: list[list] = []  # [member_id, to_pay, order]
    for order, (mid, bal) in enumerate(balances.items()):
        if bal > 0:
            creditors.append([mid, bal, order])
        elif bal < 0:
            debtors.append([mid, -bal, order])

    def _largest(parties: list[list]) -> list:
        return max(parties, key=lambda x: (x[1], -x[2]))

    out: list[Transfer] = []
    while creditors and debtors:
        c = _largest(creditors)
        d = _largest(debtors)
        amt = min(c[1], d[1])
        out.append(Transfer(from_member_id=d[0], to_member_id=c[0], amount_minor=amt, currency=currency))
        c[1] -= amt
        d[1] -= amt
        if c[1] == 0:
            creditors.remove(c)
        if d[1] == 0:
            debtors.remove(d)

    logger.debug("Simplified %d balances into %d transfers", len(balances), len(out))
    return out


def apply_transfers(balances: Mapping[MemberId, int], transfers: Iterable[Transfer]) -> dict[MemberId, int]:
    after = dict(balances)
    for t in transfers:
        after[t.from_member_id] = after.get(t.from_member_id, 0) + t.amount_minor
        after[t.to_member_id] = after.get(t.to_member_id, 0) - t.amount_minor
    return after


def plan_settlement(
    members: Sequence[Member],
    expenses: Sequence[Expense],
    splits: Iterable[Split],
    *,
    default_currency: str = "USD",
) -> SettlementPlan:
    currencies = {e.currency.upper() for e in expenses}
    if len(currencies) > 1:
        raise CurrencyMismatch(currencies)
    currency = currencies.pop() if currencies else default_currency.upper()

    entries = aggregate_entries(members, expenses, splits)
    transfers = simplify({e.member_id: e.balance_minor for e in entries}, currency=currency)
    return SettlementPlan(currency=currency, balances=entries, transfers=transfers)
