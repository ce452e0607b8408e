"""Pytest configuration and fixtures."""
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from family_rewards.config import Settings
from family_rewards.core.rewards_service import RewardsService
from family_rewards.core.state_store import JsonStateStore
from family_rewards.main import create_app
from family_rewards.streaming.broadcaster import ChangeBroadcaster


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "state.json"


@pytest.fixture
def settings(state_path: Path) -> Settings:
    """Isolated settings: temp state file, no rate limiting, fast heartbeats."""
    return Settings(
        _env_file=None,
        state_file=state_path,
        rate_limit_enabled=False,
        sse_heartbeat_seconds=0.05,
        subscriber_queue_size=8,
    )


@pytest.fixture
def store(state_path: Path) -> JsonStateStore:
    return JsonStateStore(state_path)


@pytest.fixture
def broadcaster() -> ChangeBroadcaster:
    return ChangeBroadcaster(queue_size=8)


@pytest.fixture
def service(store: JsonStateStore, broadcaster: ChangeBroadcaster) -> RewardsService:
    return RewardsService(store, broadcaster)


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture
def app_service(app: FastAPI) -> RewardsService:
    """The service instance owned by ``app``."""
    return app.state.rewards


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async test client wired straight into the ASGI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
