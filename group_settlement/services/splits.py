from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Sequence, Union

from group_settlement.services.errors import EmptyParticipants, InvalidAmount, SplitMismatch
from group_settlement.services.ledger import Split

HUNDRED = Decimal(100)
DEFAULT_PERCENTAGE_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class Equal:
    participant_count: int


@dataclass(frozen=True)
class ExplicitAmounts:
    shares: tuple[int, ...]

    def __init__(self, shares: Sequence[int]) -> None:
        object.__setattr__(self, "shares", tuple(shares))


@dataclass(frozen=True)
class Percentages:
    percentages: tuple[Decimal, ...]

    def __init__(self, percentages: Sequence[Union[Decimal, int, float, str]]) -> None:
        object.__setattr__(self, "percentages", tuple(_as_decimal(p) for p in percentages))


SplitStrategy = Union[Equal, ExplicitAmounts, Percentages]


def _as_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    # str() first so 33.3 stays 33.3 and not its binary expansion.
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except InvalidOperation:
        raise InvalidAmount(value, "not a percentage") from None


def _is_minor(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def participant_count(strategy: SplitStrategy) -> int:
    if isinstance(strategy, Equal):
        return strategy.participant_count
    if isinstance(strategy, ExplicitAmounts):
        return len(strategy.shares)
    if isinstance(strategy, Percentages):
        return len(strategy.percentages)
    raise TypeError(f"Unknown split strategy: {strategy!r}")


def allocate(
    total_minor: int,
    strategy: SplitStrategy,
    *,
    percentage_tolerance: Decimal = DEFAULT_PERCENTAGE_TOLERANCE,
) -> list[int]:
    """
    Allocate total_minor across participants; the result always sums to total_minor.

    Equal:
      base = total // n, remainder = total % n
      +1 minor unit to the first `remainder` participants in input order.
      1000 over 3 -> [334, 333, 333]

    ExplicitAmounts:
      shares are taken as-is and must add up to the total exactly.

    Percentages:
      share = round_half_away_from_zero(total * pct / 100); percentages must sum
      to 100 within percentage_tolerance. A missing residual goes to the
      participant with the largest percentage (first one on ties). An excess is
      taken back from the largest percentages first, so no share is negative.
      3 over six x 16.6667% -> [0, 0, 0, 1, 1, 1]
    """

    if not _is_minor(total_minor) or total_minor <= 0:
        raise InvalidAmount(total_minor)
    n = participant_count(strategy)
    if n <= 0:
        raise EmptyParticipants()

    if isinstance(strategy, Equal):
        share = total_minor // n
        rem = total_minor % n
        return [share + (1 if i < rem else 0) for i in range(n)]

    if isinstance(strategy, ExplicitAmounts):
        for s in strategy.shares:
            if not _is_minor(s) or s < 0:
                raise InvalidAmount(s, "shares must be non-negative integers of minor units")
        actual = sum(strategy.shares)
        if actual != total_minor:
            raise SplitMismatch(expected=total_minor, actual=actual)
        return list(strategy.shares)

    pcts = strategy.percentages
    for p in pcts:
        if not p.is_finite() or p < 0:
            raise InvalidAmount(p, "percentages must be non-negative")
    pct_sum = sum(pcts, Decimal(0))
    if abs(pct_sum - HUNDRED) > percentage_tolerance:
        raise SplitMismatch(expected=HUNDRED, actual=pct_sum, what="percentages")

    total = Decimal(total_minor)
    shares = [int((total * p / HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)) for p in pcts]
    residual = total_minor - sum(shares)
    if residual > 0:
        shares[_by_percentage(pcts)[0]] += residual
    elif residual < 0:
        # Take the excess back from the largest percentages first, never below zero.
        excess = -residual
        for i in _by_percentage(pcts):
            take = min(shares[i], excess)
            shares[i] -= take
            excess -= take
            if not excess:
                break
    return shares


def _by_percentage(pcts: Sequence[Decimal]) -> list[int]:
    # Largest percentage first; earlier participant first on ties.
    return sorted(range(len(pcts)), key=lambda i: (-pcts[i], i))


def build_splits(
    expense_id: int,
    member_ids: Sequence[int],
    total_minor: int,
    strategy: SplitStrategy,
    *,
    percentage_tolerance: Decimal = DEFAULT_PERCENTAGE_TOLERANCE,
) -> list[Split]:
    if len(set(member_ids)) != len(member_ids):
        raise SplitMismatch(
            expected=len(set(member_ids)),
            actual=len(member_ids),
            message="Each member may appear only once in a split.",
        )
    shares = allocate(total_minor, strategy, percentage_tolerance=percentage_tolerance)
    if len(shares) != len(member_ids):
        raise SplitMismatch(
            expected=len(shares),
            actual=len(member_ids),
            message=f"Split strategy has {len(shares)} entries but {len(member_ids)} members were given.",
        )
    return [Split(expense_id=expense_id, member_id=mid, amount_minor=amt) for mid, amt in zip(member_ids, shares)]
