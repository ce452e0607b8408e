"""Health check endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from family_rewards.api.dependencies import get_app_settings, get_broadcaster
from family_rewards.config import Settings
from family_rewards.streaming.broadcaster import ChangeBroadcaster

router = APIRouter()


@router.get("/health")
async def health_check(
    settings: Settings = Depends(get_app_settings),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
) -> dict[str, Any]:
    """Basic health check, plus the number of live notification subscribers."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "subscribers": broadcaster.subscriber_count,
    }
