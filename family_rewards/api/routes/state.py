"""
Family Rewards API - State Endpoints

Snapshot read plus the four mutation operations (and the legacy
one-unit ``complete``).  Each mutation returns the new value and pushes
the matching events to every connected observer via the service.

The router is built per application so each app's mutation limit and
limiter counters come from its own settings.

Errors:
- malformed body            -> 400 invalid_payload (RequestValidationError handler)
- insufficient balance      -> 400 insufficient_points
- nothing to undo           -> 400 nothing_to_undo
- too many mutations        -> 429 (slowapi handler)
- state file write failure  -> 500 persistence_failed
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from family_rewards.api.dependencies import get_rewards_service
from family_rewards.config import Settings
from family_rewards.core.rewards_service import RewardsService
from family_rewards.models.requests import (
    CompleteRequest,
    CompleteResponse,
    IndexRequest,
    IndexResponse,
    RedeemRequest,
    RedeemResponse,
    StarsRequest,
    StarsResponse,
)

logger = logging.getLogger(__name__)


def build_limiter(settings: Settings) -> Limiter:
    """Per-app limiter keyed by client IP, with in-memory counters."""
    return Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


def build_router(limiter: Limiter, mutation_limit: str) -> APIRouter:
    """State routes with ``mutation_limit`` applied to every POST."""
    router = APIRouter()

    @router.get("/state")
    async def get_state(
        service: RewardsService = Depends(get_rewards_service),
    ) -> dict[str, Any]:
        """Full state document snapshot."""
        document = await service.snapshot()
        return document.to_wire()

    @router.post("/complete", response_model=CompleteResponse)
    @limiter.limit(mutation_limit)
    async def complete(
        request: Request,
        payload: CompleteRequest,
        service: RewardsService = Depends(get_rewards_service),
    ) -> CompleteResponse:
        """Legacy +1 / -1 step, clamped to the legacy ceiling."""
        result = await service.complete(payload.id, payload.delta)
        return CompleteResponse(
            id=result.member_id,
            count=result.record.stars,
            stars=result.record.stars,
            applied=result.applied,
        )

    @router.post("/stars", response_model=StarsResponse)
    @limiter.limit(mutation_limit)
    async def adjust_stars(
        request: Request,
        payload: StarsRequest,
        service: RewardsService = Depends(get_rewards_service),
    ) -> StarsResponse:
        """Add a signed delta to a member's balance (floored at zero)."""
        result = await service.adjust_stars(payload.id, payload.delta)
        return StarsResponse(id=result.member_id, stars=result.record.stars, applied=result.applied)

    @router.post("/index", response_model=IndexResponse)
    @limiter.limit(mutation_limit)
    async def set_index(
        request: Request,
        payload: IndexRequest,
        service: RewardsService = Depends(get_rewards_service),
    ) -> IndexResponse:
        """Move a member's task or reward carousel."""
        result = await service.set_index(payload.id, payload.which, payload.index)
        index = result.record.task_index if payload.which == "task" else result.record.reward_index
        return IndexResponse(id=result.member_id, which=payload.which, index=index)

    @router.post("/redeem", response_model=RedeemResponse)
    @limiter.limit(mutation_limit)
    async def redeem(
        request: Request,
        payload: RedeemRequest,
        service: RewardsService = Depends(get_rewards_service),
    ) -> RedeemResponse:
        """Redeem a reward (``action=redeem``) or refund the last redemption (``action=undo``)."""
        if payload.action == "redeem":
            result = await service.redeem(payload.id, payload.cost, payload.reward_key)
        else:
            result = await service.undo_redeem(payload.id, payload.cost, payload.reward_key)
        return RedeemResponse(
            id=result.member_id,
            stars=result.record.stars,
            reward_key=result.reward_key,
            redeemed_count=result.redeemed_count,
        )

    return router
