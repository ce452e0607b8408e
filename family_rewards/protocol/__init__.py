"""Family Rewards protocol — single source of truth for the server → client push contract.

Public re-exports for convenience:

    from family_rewards.protocol import RewardsEvent, emit, parse_event
"""
from __future__ import annotations

from family_rewards.protocol.events import (
    ConnectedEvent,
    CountUpdatedEvent,
    IndexUpdatedEvent,
    RedeemUpdatedEvent,
    RewardsEvent,
    StarsUpdatedEvent,
)
from family_rewards.protocol.emitter import (
    ProtocolSerializationError,
    emit,
    parse_event,
    parse_sse_data,
)

__all__ = [
    "RewardsEvent",
    "ConnectedEvent",
    "CountUpdatedEvent",
    "StarsUpdatedEvent",
    "IndexUpdatedEvent",
    "RedeemUpdatedEvent",
    "emit",
    "parse_event",
    "parse_sse_data",
    "ProtocolSerializationError",
]
