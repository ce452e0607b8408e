"""Fan-out of change notifications to connected observers."""
from __future__ import annotations

from family_rewards.streaming.broadcaster import ChangeBroadcaster, Subscription

__all__ = ["ChangeBroadcaster", "Subscription"]
