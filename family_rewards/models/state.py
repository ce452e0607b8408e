"""Persisted state models: one ``MemberRecord`` per member, one ``StateDocument`` overall.

The document is the whole unit of persistence::

    {"members": {"zoe": {"stars": 5, "taskIndex": 0, "rewardIndex": 1,
                         "redemptions": {"reward:0": 2}}}}

Documents written by the first release stored a bare integer count per
member; those are migrated on load.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, field_validator

from family_rewards.models.base import CamelModel

CarouselKind = Literal["task", "reward"]

REWARD_KEY_PREFIX = "reward"


def reward_key(index: int) -> str:
    """Build the redemption key for the reward at ``index`` (``"reward:0"``)."""
    return f"{REWARD_KEY_PREFIX}:{index}"


class MemberRecord(CamelModel):
    """Balance, carousel positions and redemption counts for one member.

    ``task_index`` / ``reward_index`` point into lists owned by the family
    configuration and are never bounds-checked here; consumers clamp them.
    """

    stars: int = Field(default=0, ge=0)
    task_index: int = Field(default=0, ge=0)
    reward_index: int = Field(default=0, ge=0)
    redemptions: dict[str, int] = Field(default_factory=dict)

    @field_validator("redemptions")
    @classmethod
    def _positive_counts_only(cls, value: dict[str, int]) -> dict[str, int]:
        if any(count < 0 for count in value.values()):
            raise ValueError("redemption counts cannot be negative")
        return {key: count for key, count in value.items() if count > 0}

    def redeemed_count(self, key: str) -> int:
        return self.redemptions.get(key, 0)


class StateDocument(CamelModel):
    """Mapping of member id to record."""

    members: dict[str, MemberRecord] = Field(default_factory=dict)

    @field_validator("members", mode="before")
    @classmethod
    def _migrate_legacy_counts(cls, value: Any) -> Any:
        """Turn ``{"zoe": 7}`` (first-release shape) into a full record."""
        if not isinstance(value, dict):
            return value
        migrated: dict[str, Any] = {}
        for member_id, record in value.items():
            if isinstance(record, int) and not isinstance(record, bool):
                migrated[member_id] = {"stars": max(0, record)}
            else:
                migrated[member_id] = record
        return migrated

    def member(self, member_id: str) -> MemberRecord:
        """Return the record for ``member_id``, creating a zeroed one if absent."""
        record = self.members.get(member_id)
        if record is None:
            record = MemberRecord()
            self.members[member_id] = record
        return record

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
