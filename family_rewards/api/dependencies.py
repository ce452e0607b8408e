"""FastAPI dependencies resolving the app-owned service instances.

``create_app`` builds the store, broadcaster and service once and parks them
on ``app.state``; handlers receive them through these dependencies instead
of importing module globals.
"""
from __future__ import annotations

from fastapi import Request

from family_rewards.config import Settings
from family_rewards.core.rewards_service import RewardsService
from family_rewards.streaming.broadcaster import ChangeBroadcaster


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_rewards_service(request: Request) -> RewardsService:
    return request.app.state.rewards


def get_broadcaster(request: Request) -> ChangeBroadcaster:
    return request.app.state.rewards.broadcaster
