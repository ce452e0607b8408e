"""Pure state transitions on a single ``MemberRecord``.

Shared by the server (authoritative apply) and the client (optimistic
prediction), so both sides agree on what a mutation does.  Each function
mutates the record in place and returns the value the caller reports back.
Rule violations raise before anything is touched.
"""
from __future__ import annotations

from family_rewards.core.errors import InsufficientPointsError, NothingToUndoError
from family_rewards.models.state import CarouselKind, MemberRecord


def adjust_stars(record: MemberRecord, delta: int) -> int:
    """Add ``delta`` to the balance, flooring at zero. Returns the new balance."""
    record.stars = max(0, record.stars + delta)
    return record.stars


def complete_unit(record: MemberRecord, delta: int, ceiling: int) -> int:
    """Legacy one-unit step, clamped to ``[0, ceiling]``.

    A balance already above ``ceiling`` (earned through ``adjust_stars``) is
    never pulled down to it; the step just cannot raise it further.
    """
    upper = max(ceiling, record.stars)
    record.stars = max(0, min(upper, record.stars + delta))
    return record.stars


def set_index(record: MemberRecord, which: CarouselKind, index: int) -> int:
    if which == "task":
        record.task_index = index
    else:
        record.reward_index = index
    return index


def redeem(record: MemberRecord, member_id: str, key: str, cost: int) -> int:
    """Spend ``cost`` stars on reward ``key``. Returns the new redemption count."""
    if record.stars < cost:
        raise InsufficientPointsError(member_id, record.stars, cost)
    record.stars -= cost
    record.redemptions[key] = record.redeemed_count(key) + 1
    return record.redemptions[key]


def undo_redeem(record: MemberRecord, member_id: str, key: str, cost: int) -> int:
    """Refund one redemption of ``key``. Returns the remaining count (0 drops the key)."""
    count = record.redeemed_count(key)
    if count <= 0:
        raise NothingToUndoError(member_id, key)
    record.stars += cost
    if count == 1:
        del record.redemptions[key]
        return 0
    record.redemptions[key] = count - 1
    return count - 1
