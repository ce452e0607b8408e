"""Mutation API for member balances, carousel positions and redemptions.

Every operation follows the same sequence:

1. validate the arguments (``InvalidPayloadError`` on bad input)
2. open a store transaction (document lock held from load to save)
3. apply a pure transition from ``family_rewards.core.transitions``
4. save, then publish the resulting events to all subscribers

A rule violation in step 3 aborts the transaction, so nothing is saved or
published.  A write failure in step 4 surfaces as ``PersistenceError`` and
likewise publishes nothing.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from family_rewards.config import LEGACY_MAX_COUNT
from family_rewards.core import transitions
from family_rewards.core.errors import InvalidPayloadError
from family_rewards.core.state_store import JsonStateStore
from family_rewards.models.state import MemberRecord, StateDocument, reward_key
from family_rewards.protocol.events import (
    CountUpdatedEvent,
    IndexUpdatedEvent,
    RedeemUpdatedEvent,
    RewardsEvent,
    StarsUpdatedEvent,
)
from family_rewards.streaming.broadcaster import ChangeBroadcaster

logger = logging.getLogger(__name__)

CAROUSEL_KINDS = ("task", "reward")


@dataclass
class MutationResult:
    """Outcome of an accepted mutation: the member's new record and the events pushed."""

    member_id: str
    record: MemberRecord
    events: list[RewardsEvent] = field(default_factory=list)


@dataclass
class BalanceResult(MutationResult):
    """Balance change; ``applied`` is the server-side difference after clamping."""

    applied: int = 0


@dataclass
class RedemptionResult(MutationResult):
    reward_key: str = ""
    redeemed_count: int = 0


# =============================================================================
# Argument validation
# =============================================================================


def _require_member_id(member_id: object) -> str:
    if not isinstance(member_id, str) or not member_id:
        raise InvalidPayloadError("Invalid payload. Expected id to be a non-empty string")
    return member_id


def _require_whole_number(name: str, value: object, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidPayloadError(f"Invalid payload. Expected {name} to be a number")
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise InvalidPayloadError(f"Invalid payload. Expected {name} to be a finite whole number")
        value = int(value)
    if minimum is not None and value < minimum:
        raise InvalidPayloadError(f"Invalid payload. Expected {name} >= {minimum}")
    return value


class RewardsService:
    """Authoritative state machine over the shared ``StateDocument``.

    One instance per application, constructed at startup and injected into
    request handlers.
    """

    def __init__(
        self,
        store: JsonStateStore,
        broadcaster: ChangeBroadcaster,
        legacy_max_count: int = LEGACY_MAX_COUNT,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.legacy_max_count = legacy_max_count

    async def snapshot(self) -> StateDocument:
        """Full document as currently persisted."""
        return await self.store.load()

    # =========================================================================
    # Mutations
    # =========================================================================

    async def adjust_stars(self, member_id: str, delta: int) -> BalanceResult:
        """Add a signed delta to the balance, flooring at zero."""
        member_id = _require_member_id(member_id)
        delta = _require_whole_number("delta", delta)

        async with self.store.transaction() as document:
            record = document.member(member_id)
            previous = record.stars
            stars = transitions.adjust_stars(record, delta)
            events: list[RewardsEvent] = [StarsUpdatedEvent(id=member_id, stars=stars)]

        logger.debug(f"stars {member_id} {delta:+d} -> {stars}")
        return await self._balance(member_id, record, events, stars - previous)

    async def complete(self, member_id: str, delta: int) -> BalanceResult:
        """Legacy one-unit complete/undo: delta must be ±1, balance clamped to the legacy ceiling."""
        member_id = _require_member_id(member_id)
        if isinstance(delta, bool) or not isinstance(delta, int) or delta not in (1, -1):
            raise InvalidPayloadError(
                "Invalid payload. Expected { id: string, delta: 1 | -1 }"
            )

        async with self.store.transaction() as document:
            record = document.member(member_id)
            previous = record.stars
            count = transitions.complete_unit(record, delta, self.legacy_max_count)
            events: list[RewardsEvent] = [
                CountUpdatedEvent(id=member_id, count=count),
                StarsUpdatedEvent(id=member_id, stars=count),
            ]

        logger.debug(f"complete {member_id} {delta:+d} -> {count}")
        return await self._balance(member_id, record, events, count - previous)

    async def set_index(self, member_id: str, which: str, index: int) -> MutationResult:
        """Overwrite the task or reward carousel position."""
        member_id = _require_member_id(member_id)
        if which not in CAROUSEL_KINDS:
            raise InvalidPayloadError('Invalid payload. Expected which to be "task" or "reward"')
        if isinstance(index, bool) or not isinstance(index, int):
            raise InvalidPayloadError("Invalid payload. Expected index to be an integer")
        if index < 0:
            raise InvalidPayloadError("Invalid payload. Expected index >= 0")

        async with self.store.transaction() as document:
            record = document.member(member_id)
            transitions.set_index(record, which, index)  # type: ignore[arg-type]  # checked above
            events: list[RewardsEvent] = [
                IndexUpdatedEvent(id=member_id, which=which, index=index)  # type: ignore[arg-type]
            ]

        logger.debug(f"index {member_id} {which}={index}")
        return await self._commit(member_id, record, events)

    async def redeem(
        self, member_id: str, cost: int, key: Optional[str] = None
    ) -> RedemptionResult:
        """Spend ``cost`` stars on a reward; rejected when the balance is short."""
        return await self._redemption("redeem", member_id, cost, key)

    async def undo_redeem(
        self, member_id: str, cost: int, key: Optional[str] = None
    ) -> RedemptionResult:
        """Refund the most recent redemption of a reward; rejected when there is none."""
        return await self._redemption("undo", member_id, cost, key)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _redemption(
        self, action: str, member_id: str, cost: int, key: Optional[str]
    ) -> RedemptionResult:
        member_id = _require_member_id(member_id)
        cost = _require_whole_number("cost", cost, minimum=0)
        if key is not None and (not isinstance(key, str) or not key):
            raise InvalidPayloadError("Invalid payload. Expected rewardKey to be a non-empty string")

        async with self.store.transaction() as document:
            record = document.member(member_id)
            key = key or reward_key(record.reward_index)
            if action == "redeem":
                count = transitions.redeem(record, member_id, key, cost)
            else:
                count = transitions.undo_redeem(record, member_id, key, cost)
            events: list[RewardsEvent] = [
                RedeemUpdatedEvent(id=member_id, reward_key=key, count=count, stars=record.stars)
            ]

        logger.debug(f"{action} {member_id} {key} cost={cost} -> stars={record.stars} count={count}")
        result = await self._commit(member_id, record, events)
        return RedemptionResult(
            member_id=result.member_id,
            record=result.record,
            events=result.events,
            reward_key=key,
            redeemed_count=count,
        )

    async def _balance(
        self, member_id: str, record: MemberRecord, events: list[RewardsEvent], applied: int
    ) -> BalanceResult:
        result = await self._commit(member_id, record, events)
        return BalanceResult(
            member_id=result.member_id, record=result.record, events=result.events, applied=applied
        )

    async def _commit(
        self, member_id: str, record: MemberRecord, events: list[RewardsEvent]
    ) -> MutationResult:
        # Publishing never suspends, so delivery order matches commit order.
        await self.broadcaster.publish(events)
        return MutationResult(member_id=member_id, record=record.model_copy(deep=True), events=events)
