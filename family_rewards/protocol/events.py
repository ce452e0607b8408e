"""Family Rewards event models — single source of truth for the SSE wire format.

Every notification the server pushes is an instance of a RewardsEvent
subclass.  Raw dicts are never emitted; the emitter serializes these models.

Wire format rules:
  - All keys are camelCase (via CamelModel alias_generator)
  - Every event has a ``type`` tag from a fixed set
  - JSON serialization uses model_dump(by_alias=True, exclude_none=True)

A single mutation may produce several events (the legacy ``complete`` call
emits ``count-updated`` and ``stars-updated``); handlers always deal in
lists of events.
"""

from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, Field

from family_rewards.models.base import CamelModel
from family_rewards.models.state import CarouselKind


class RewardsEvent(CamelModel):
    """Base class for all notification events."""

    model_config = ConfigDict(extra="forbid")

    type: str


class ConnectedEvent(RewardsEvent):
    """First event on every stream, acknowledging the subscription."""

    type: Literal["connected"] = "connected"
    subscriber_id: str | None = None


class CountUpdatedEvent(RewardsEvent):
    """Legacy balance update, kept for consumers of the legacy ``complete`` call."""

    type: Literal["count-updated"] = "count-updated"
    id: str
    count: int = Field(ge=0)


class StarsUpdatedEvent(RewardsEvent):
    type: Literal["stars-updated"] = "stars-updated"
    id: str
    stars: int = Field(ge=0)


class IndexUpdatedEvent(RewardsEvent):
    type: Literal["index-updated"] = "index-updated"
    id: str
    which: CarouselKind
    index: int = Field(ge=0)


class RedeemUpdatedEvent(RewardsEvent):
    """Redemption count change for one reward key.

    ``stars`` carries the post-redemption balance so a single event keeps
    balance-aware consumers in sync; older consumers ignore it.
    """

    type: Literal["redeem-updated"] = "redeem-updated"
    id: str
    reward_key: str
    count: int = Field(ge=0)
    stars: int | None = Field(default=None, ge=0)
