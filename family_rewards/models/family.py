"""Family configuration: members with their ordered task and reward lists.

The configuration is owned outside the server (clients load it from a JSON
file).  Only list lengths and point values matter here; presentation fields
such as images and avatars are accepted and ignored.

Example::

    {"members": [
        {"id": "malcolm", "name": "Goh goh",
         "tasks": [{"title": "Phonics Time", "units": [{"label": "10 words", "stars": 1}]}],
         "rewards": [{"title": "Digital Watch", "cost": 30}]}
    ]}
"""
from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from family_rewards.models.state import reward_key


def clamp_index(index: int, length: int) -> int:
    """Clamp a stored carousel position to ``[0, length - 1]`` (0 for empty lists)."""
    if length <= 0:
        return 0
    return max(0, min(index, length - 1))


def cycle_index(index: int, length: int, step: int = 1) -> int:
    """Move a carousel position by ``step``, wrapping around the list."""
    if length <= 0:
        return 0
    return (clamp_index(index, length) + step) % length


class _ConfigModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TaskUnit(_ConfigModel):
    label: str
    stars: int = Field(ge=0)


class TaskConfig(_ConfigModel):
    """A chore, worth either a flat ``stars`` value or one of several ``units``."""

    title: str
    stars: int | None = Field(default=None, ge=0)
    units: list[TaskUnit] = Field(default_factory=list)

    @model_validator(mode="after")
    def _has_points(self) -> "TaskConfig":
        if self.stars is None and not self.units:
            raise ValueError(f"task '{self.title}' needs either stars or units")
        return self

    def points(self, unit: int = 0) -> int:
        """Stars granted for one completion of ``unit`` (or the flat value)."""
        if not self.units:
            return self.stars or 0
        return self.units[clamp_index(unit, len(self.units))].stars


class RewardConfig(_ConfigModel):
    title: str
    cost: int = Field(ge=0)


class MemberConfig(_ConfigModel):
    id: str = Field(min_length=1)
    name: str = ""
    tasks: list[TaskConfig] = Field(default_factory=list)
    rewards: list[RewardConfig] = Field(default_factory=list)

    def task_at(self, index: int) -> TaskConfig | None:
        if not self.tasks:
            return None
        return self.tasks[clamp_index(index, len(self.tasks))]

    def reward_at(self, index: int) -> tuple[str, RewardConfig] | None:
        """The reward at the clamped ``index`` together with its redemption key."""
        if not self.rewards:
            return None
        position = clamp_index(index, len(self.rewards))
        return reward_key(position), self.rewards[position]


class FamilyConfig(_ConfigModel):
    members: list[MemberConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "FamilyConfig":
        ids = [member.id for member in self.members]
        duplicates = sorted({member_id for member_id in ids if ids.count(member_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate member ids: {', '.join(duplicates)}")
        return self

    def member(self, member_id: str) -> MemberConfig:
        for member in self.members:
            if member.id == member_id:
                return member
        raise KeyError(member_id)

    @classmethod
    def load(cls, path: Path) -> "FamilyConfig":
        """Read a family config JSON file."""
        return cls.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))
