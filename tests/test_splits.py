"""
Split allocation: every strategy returns shares that add up to the total exactly.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from group_settlement.services.errors import EmptyParticipants, InvalidAmount, SplitMismatch
from group_settlement.services.ledger import Split
from group_settlement.services.splits import Equal, ExplicitAmounts, Percentages, allocate, build_splits


def test_equal_split_first_participant_absorbs_remainder():
    assert allocate(1000, Equal(3)) == [334, 333, 333]


def test_equal_split_remainder_goes_to_first_in_order():
    # 403 over 4: base 100, remainder 3
    assert allocate(403, Equal(4)) == [101, 101, 101, 100]


@pytest.mark.parametrize("total", [1, 2, 7, 99, 100, 1000, 12345, 10**9 + 7])
@pytest.mark.parametrize("n", [1, 2, 3, 6, 7, 13])
def test_equal_split_sums_to_total_and_differs_by_at_most_one(total, n):
    shares = allocate(total, Equal(n))
    assert len(shares) == n
    assert sum(shares) == total
    assert max(shares) - min(shares) <= 1
    # larger shares come first
    assert shares == sorted(shares, reverse=True)


def test_explicit_amounts_are_returned_as_given():
    assert allocate(1000, ExplicitAmounts([250, 0, 750])) == [250, 0, 750]


def test_explicit_amounts_mismatch_is_rejected():
    with pytest.raises(SplitMismatch) as exc:
        allocate(100, ExplicitAmounts([50, 49]))
    assert exc.value.expected == 100
    assert exc.value.actual == 99


def test_explicit_mismatch_produces_no_splits():
    with pytest.raises(SplitMismatch):
        build_splits(1, [10, 20], 100, ExplicitAmounts([50, 49]))


@pytest.mark.parametrize("shares", [[-1, 101], [50.0, 50], ["50", 50]])
def test_explicit_amounts_must_be_non_negative_integers(shares):
    with pytest.raises(InvalidAmount):
        allocate(100, ExplicitAmounts(shares))


@pytest.mark.parametrize("strategy", [Equal(0), ExplicitAmounts([]), Percentages([])])
def test_empty_participants(strategy):
    with pytest.raises(EmptyParticipants):
        allocate(100, strategy)


@pytest.mark.parametrize("total", [0, -100, 10.5, True, "100"])
def test_total_must_be_positive_minor_units(total):
    with pytest.raises(InvalidAmount):
        allocate(total, Equal(2))


def test_percentages_residual_goes_to_largest_percentage():
    # 33 + 33 + 33 = 99; the missing cent goes to the 33.34% participant
    assert allocate(100, Percentages(["33.33", "33.33", "33.34"])) == [33, 33, 34]


def test_percentages_rounding_half_away_from_zero_then_residual_to_first_largest():
    # 2.5 rounds to 3 for both; the extra unit is taken back from the first
    assert allocate(5, Percentages([50, 50])) == [2, 3]


def test_percentage_excess_never_makes_a_share_negative():
    # Each 16.6667% of 3 rounds up to 1; the 3 extra units come back from the first three.
    shares = allocate(3, Percentages(["16.6667"] * 6))
    assert shares == [0, 0, 0, 1, 1, 1]
    assert min(shares) >= 0


@pytest.mark.parametrize("total", [1, 2, 3, 5, 7, 11])
def test_percentage_shares_are_non_negative_for_tiny_totals(total):
    shares = allocate(total, Percentages(["16.6667"] * 6))
    assert sum(shares) == total
    assert min(shares) >= 0


def test_percentages_within_tolerance_are_accepted():
    shares = allocate(10000, Percentages([33.33, 33.33, 33.33]))
    assert shares == [3334, 3333, 3333]


def test_percentages_outside_tolerance_are_rejected():
    with pytest.raises(SplitMismatch) as exc:
        allocate(1000, Percentages([50, 49]))
    assert exc.value.actual == Decimal(99)


def test_percentage_tolerance_is_configurable():
    assert sum(allocate(1000, Percentages([50, 49.5]), percentage_tolerance=Decimal("0.5"))) == 1000


def test_float_percentages_are_read_as_written():
    assert allocate(1000, Percentages([12.5, 87.5])) == [125, 875]


@pytest.mark.parametrize("pct", [-10, "abc", "NaN"])
def test_invalid_percentages(pct):
    with pytest.raises(InvalidAmount):
        allocate(1000, Percentages([pct, 100]))


@pytest.mark.parametrize(
    "total,percentages",
    [
        (1, ["33.33", "33.33", "33.34"]),
        (999, ["10", "20", "30", "40"]),
        (1001, ["14.29", "14.29", "14.29", "14.29", "14.28", "14.28", "14.28"]),
        (123457, ["0.5", "99.5"]),
        (7, ["25", "25", "25", "25"]),
    ],
)
def test_percentage_shares_always_sum_to_total(total, percentages):
    assert sum(allocate(total, Percentages(percentages))) == total


def test_build_splits_pairs_members_with_shares():
    assert build_splits(7, [10, 20, 30], 1000, Equal(3)) == [
        Split(expense_id=7, member_id=10, amount_minor=334),
        Split(expense_id=7, member_id=20, amount_minor=333),
        Split(expense_id=7, member_id=30, amount_minor=333),
    ]


def test_build_splits_rejects_duplicate_members():
    with pytest.raises(SplitMismatch):
        build_splits(1, [10, 10], 100, Equal(2))


def test_build_splits_rejects_strategy_of_wrong_length():
    with pytest.raises(SplitMismatch):
        build_splits(1, [10, 20, 30], 100, ExplicitAmounts([50, 50]))
