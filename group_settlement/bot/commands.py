from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from group_settlement.db.models import Member
from group_settlement.services.errors import InvalidAmount
from group_settlement.services.money import to_minor
from group_settlement.services.splits import ExplicitAmounts, Percentages, SplitStrategy

NOTE_MAX = 200
ADD_USAGE = "/add <amount> [@who[:amount|:percent%] ...] [note]"


@dataclass(frozen=True)
class ShareArg:
    handle: str
    # "12.50", "40%" or None for an equal share.
    value: Optional[str] = None


@dataclass(frozen=True)
class AddArgs:
    amount_minor: int
    note: Optional[str]
    shares: tuple[ShareArg, ...] = ()


def _handle(name: str) -> str:
    return "_".join(name.split()).lstrip("@").casefold()


def _share_arg(token: str) -> ShareArg:
    handle, sep, value = token[1:].partition(":")
    if not handle or (sep and not value):
        raise ValueError(f"Usage: {ADD_USAGE}")
    return ShareArg(handle=_handle(handle), value=value or None)


def parse_add_args(args: Optional[str], *, currency: str, usage: str = ADD_USAGE) -> AddArgs:
    """
    "/add 12.50 pizza night" -> AddArgs(1250, "pizza night") for USD.

    Participants are @handles, optionally with an amount or a percentage:
    "/add 30 @ann:10 @bob:20 taxi", "/add 30 @ann:40% @bob:60%". Without
    handles the expense is split equally among everyone.
    """

    tokens = (args or "").split()
    if not tokens:
        raise ValueError(f"Usage: {usage}")
    amount_minor = to_minor(tokens[0], currency)
    if amount_minor <= 0:
        raise InvalidAmount(tokens[0])

    shares = tuple(_share_arg(t) for t in tokens[1:] if t.startswith("@"))
    note = " ".join(t for t in tokens[1:] if not t.startswith("@"))[:NOTE_MAX]
    return AddArgs(amount_minor=amount_minor, note=note or None, shares=shares)


def parse_edit_args(args: Optional[str], *, currency: str) -> tuple[int, AddArgs]:
    usage = "/edit <expense id> <amount> [@who[:amount|:percent%] ...] [note]"
    parts = (args or "").split(maxsplit=1)
    if not parts:
        raise ValueError(f"Usage: {usage}")
    expense_id = parse_number(parts[0], usage=usage)
    return expense_id, parse_add_args(parts[1] if len(parts) > 1 else None, currency=currency, usage=usage)


def _handles(m: Member) -> set[str]:
    return {_handle(n) for n in (m.username, m.placeholder_name, m.first_name) if n}


def resolve_shares(
    shares: Sequence[ShareArg],
    members: Sequence[Member],
    *,
    currency: str,
) -> tuple[list[int], Optional[SplitStrategy]]:
    """
    Map @handles to member ids and pick the split strategy.

    No handles: everyone, equal split. Handles without values: equal split
    among them. Otherwise every handle needs an amount, or every handle a
    percentage.
    """

    if not shares:
        return [m.id for m in members], None

    ids: list[int] = []
    for s in shares:
        found = [m for m in members if s.handle in _handles(m)]
        if not found:
            raise ValueError(f"@{s.handle} is not a member of this group.")
        if len(found) > 1:
            raise ValueError(f"@{s.handle} matches more than one member; use their username.")
        ids.append(found[0].id)

    values = [s.value for s in shares]
    if all(v is None for v in values):
        return ids, None
    if any(v is None for v in values):
        raise ValueError("Give a share to every participant, or to none of them.")
    if all(v.endswith("%") for v in values):
        return ids, Percentages([v[:-1] for v in values])
    if any(v.endswith("%") for v in values):
        raise ValueError("Use either amounts or percentages, not both.")
    return ids, ExplicitAmounts([to_minor(v, currency) for v in values])


def parse_number(args: Optional[str], *, usage: str) -> int:
    s = (args or "").strip().lstrip("#")
    if not s.isdigit() or int(s) <= 0:
        raise ValueError(f"Usage: {usage}")
    return int(s)


def parse_guest_name(args: Optional[str]) -> str:
    name = " ".join((args or "").split())
    if not name:
        raise ValueError("Usage: /guest <name>")
    return name
