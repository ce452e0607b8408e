"""Client-side reconciliation: local view, undo stack and the syncing API client."""
from __future__ import annotations

from family_rewards.client.sync import FAILED_TO_UPDATE, RewardsClient, RewardsClientError
from family_rewards.client.undo import UndoStack
from family_rewards.client.view import LocalView

__all__ = [
    "FAILED_TO_UPDATE",
    "LocalView",
    "RewardsClient",
    "RewardsClientError",
    "UndoStack",
]
