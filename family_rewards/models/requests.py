"""Request and response models for the Family Rewards API."""
from __future__ import annotations

import math
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field, StrictInt, StrictStr, field_validator

from family_rewards.models.base import CamelModel
from family_rewards.models.state import CarouselKind


def _whole_number(value: object) -> object:
    """Accept ints and integral floats (``5.0``); reject bools, NaN and infinities."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("must be finite")
        if not value.is_integer():
            raise ValueError("must be a whole number")
        return int(value)
    return value


WholeNumber = Annotated[int, BeforeValidator(_whole_number)]
MemberId = Annotated[StrictStr, Field(min_length=1, max_length=128)]


# =============================================================================
# Requests
# =============================================================================


class CompleteRequest(CamelModel):
    """Legacy one-unit complete (+1) or undo (-1)."""

    id: MemberId
    delta: StrictInt

    @field_validator("delta")
    @classmethod
    def _unit_step(cls, value: int) -> int:
        if value not in (1, -1):
            raise ValueError("delta must be 1 or -1")
        return value


class StarsRequest(CamelModel):
    id: MemberId
    delta: WholeNumber


class IndexRequest(CamelModel):
    id: MemberId
    which: CarouselKind
    index: StrictInt = Field(ge=0)


class RedeemRequest(CamelModel):
    """Redeem a reward, or undo the last redemption of it.

    ``rewardKey`` defaults to the member's current reward position.
    """

    id: MemberId
    reward_key: StrictStr | None = Field(default=None, min_length=1)
    cost: WholeNumber = Field(ge=0)
    action: Literal["redeem", "undo"]


# =============================================================================
# Responses
# =============================================================================


class CompleteResponse(CamelModel):
    id: str
    count: int
    stars: int
    applied: int


class StarsResponse(CamelModel):
    """``applied`` is the change actually made after the zero floor."""

    id: str
    stars: int
    applied: int


class IndexResponse(CamelModel):
    id: str
    which: CarouselKind
    index: int


class RedeemResponse(CamelModel):
    id: str
    stars: int
    reward_key: str
    redeemed_count: int
