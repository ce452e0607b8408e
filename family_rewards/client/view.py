"""Observer-side copy of the state document.

Every pushed event is applied the same way, whether this client caused it
or another one did: get-or-create the member's record, overwrite the field
the event names, and flag the member as freshly synced.  Applying an event
twice leaves the same state as applying it once.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from typing import Optional

from family_rewards.core import transitions
from family_rewards.models.state import MemberRecord, StateDocument
from family_rewards.protocol.events import (
    CountUpdatedEvent,
    IndexUpdatedEvent,
    RedeemUpdatedEvent,
    RewardsEvent,
    StarsUpdatedEvent,
)

# How long a member shows the "synced externally" badge after an event.
SYNC_FLASH_SECONDS = 1.5


class LocalView:
    """Local member records plus a timestamp of the last pushed update per member."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.members: dict[str, MemberRecord] = {}
        self._synced_at: dict[str, float] = {}
        self._clock = clock

    def replace(self, document: StateDocument) -> None:
        """Swap in a full snapshot."""
        self.members = {
            member_id: record.model_copy(deep=True)
            for member_id, record in document.members.items()
        }

    def record(self, member_id: str) -> MemberRecord:
        """The local record for ``member_id``, created zeroed if unknown."""
        record = self.members.get(member_id)
        if record is None:
            record = MemberRecord()
            self.members[member_id] = record
        return record

    def copy_of(self, member_id: str) -> Optional[MemberRecord]:
        record = self.members.get(member_id)
        return record.model_copy(deep=True) if record is not None else None

    def restore(self, member_id: str, previous: Optional[MemberRecord]) -> None:
        """Put back a record captured with ``copy_of`` (``None`` removes it)."""
        if previous is None:
            self.members.pop(member_id, None)
        else:
            self.members[member_id] = previous

    def apply_event(self, event: RewardsEvent) -> bool:
        """Merge one pushed event. Returns False for events that carry no state."""
        if isinstance(event, (CountUpdatedEvent, StarsUpdatedEvent)):
            record = self.record(event.id)
            record.stars = event.count if isinstance(event, CountUpdatedEvent) else event.stars
        elif isinstance(event, IndexUpdatedEvent):
            transitions.set_index(self.record(event.id), event.which, event.index)
        elif isinstance(event, RedeemUpdatedEvent):
            record = self.record(event.id)
            if event.count > 0:
                record.redemptions[event.reward_key] = event.count
            else:
                record.redemptions.pop(event.reward_key, None)
            if event.stars is not None:
                record.stars = event.stars
        else:
            return False

        self._synced_at[event.id] = self._clock()
        return True

    def recently_synced(self, member_id: str, window: float = SYNC_FLASH_SECONDS) -> bool:
        """True while the member's transient "synced" indicator should show."""
        synced_at = self._synced_at.get(member_id)
        return synced_at is not None and self._clock() - synced_at < window
