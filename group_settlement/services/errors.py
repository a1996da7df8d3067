from __future__ import annotations

from typing import Any, Optional


class SettlementError(ValueError):
    """Base class for every validation failure raised by the settlement engine."""


class InvalidAmount(SettlementError):
    def __init__(self, amount: Any, reason: str = "amount must be a positive number of minor units") -> None:
        self.amount = amount
        super().__init__(f"Invalid amount {amount!r}: {reason}.")


class EmptyParticipants(SettlementError):
    def __init__(self, what: str = "participants") -> None:
        super().__init__(f"At least one entry is required in {what}.")


class SplitMismatch(SettlementError):
    def __init__(self, expected: Any, actual: Any, what: str = "shares", message: Optional[str] = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message or f"Sum of {what} is {actual}, expected {expected}.")


class UnknownMember(SettlementError):
    def __init__(self, member_id: Any, where: str = "split") -> None:
        self.member_id = member_id
        super().__init__(f"{where.capitalize()} references member {member_id!r} which is not in the group roster.")


class UnbalancedInput(SettlementError):
    def __init__(self, total: int) -> None:
        self.total = total
        super().__init__(f"Balances must net to zero, got {total}.")


class CurrencyMismatch(SettlementError):
    def __init__(self, currencies: set[str]) -> None:
        self.currencies = currencies
        super().__init__(f"Expenses use more than one currency: {', '.join(sorted(currencies))}.")
