"""API route modules."""
from __future__ import annotations

from family_rewards.api.routes import events, health, state

__all__ = ["events", "health", "state"]
