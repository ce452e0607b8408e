"""Event registry — canonical mapping of event type strings to model classes.

Invariants:
  - Every event the server can push has an entry.
  - Unknown event types cannot be emitted (emitter rejects them).
  - Registry is frozen at import time. No runtime mutation.
"""

from __future__ import annotations

from typing import Type

from family_rewards.protocol.events import (
    ConnectedEvent,
    CountUpdatedEvent,
    IndexUpdatedEvent,
    RedeemUpdatedEvent,
    RewardsEvent,
    StarsUpdatedEvent,
)

EVENT_REGISTRY: dict[str, Type[RewardsEvent]] = {
    "connected": ConnectedEvent,
    "count-updated": CountUpdatedEvent,
    "stars-updated": StarsUpdatedEvent,
    "index-updated": IndexUpdatedEvent,
    "redeem-updated": RedeemUpdatedEvent,
}

ALL_EVENT_TYPES: frozenset[str] = frozenset(EVENT_REGISTRY.keys())


def get_event_class(event_type: str) -> Type[RewardsEvent]:
    """Look up the model class for an event type. Raises KeyError for unknown types."""
    return EVENT_REGISTRY[event_type]


def is_known_event(event_type: str) -> bool:
    """Return ``True`` when ``event_type`` is a registered event type string."""
    return event_type in EVENT_REGISTRY
