from __future__ import annotations

from group_settlement.db.models import Member
from group_settlement.services.money import format_minor


def member_label(m: Member) -> str:
    if m.placeholder_name:
        return f"{m.placeholder_name} (guest)"
    if m.username:
        return f"@{m.username}"
    if m.first_name:
        return m.first_name
    return str(m.tg_user_id)


def format_amount(amount_minor: int, currency: str, *, signed: bool = False) -> str:
    return f"{format_minor(amount_minor, currency, signed=signed)} {currency}"
