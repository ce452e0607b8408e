"""
Family Rewards Configuration

Environment-based configuration for the rewards service and its clients.
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _app_version_from_package() -> str:
    """Read version from the installed distribution metadata."""
    try:
        from importlib.metadata import version
        return version("family-rewards")
    except Exception:
        pass
    # Fallback: parse pyproject.toml directly (dev / non-installed mode)
    try:
        import re
        pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
        match = re.search(r'^version\s*=\s*"([^"]+)"', pyproject.read_text(), re.MULTILINE)
        if match:
            return match.group(1)
    except Exception:
        pass
    return "0.0.0-unknown"


# Ceiling of the legacy one-unit "complete" call.  Only that
# operation clamps to it; the star balance itself is unbounded above.
LEGACY_MAX_COUNT: int = 30


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service Info
    app_name: str = "Family Rewards"
    app_version: str = _app_version_from_package()
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 3001

    # Persisted state document ({"members": {...}})
    state_file: Path = Path("data/state.json")

    # CORS: the Vite dev server by default
    cors_origins: list[str] = ["http://localhost:5173"]

    # Notification channel
    sse_heartbeat_seconds: float = 15.0
    subscriber_queue_size: int = 64  # events buffered per subscriber before it is dropped

    # Legacy /complete endpoint
    legacy_max_count: int = LEGACY_MAX_COUNT

    # Mutation endpoint rate limits (per client IP)
    rate_limit_enabled: bool = True
    mutation_rate_limit: str = "120/minute"

    # Client side (dashboard / CLI)
    api_url: str = "http://localhost:3001"
    reconnect_delay_seconds: float = 3.0
    # None keeps reconnecting forever; set a number to give up after that many failures
    max_reconnect_attempts: Optional[int] = None
    family_config_file: Optional[Path] = None

    @model_validator(mode="after")
    def _check_stream_limits(self) -> "Settings":
        """Reject settings that would make the notification channel unusable."""
        if self.subscriber_queue_size < 1:
            raise ValueError("subscriber_queue_size must be at least 1")
        if self.sse_heartbeat_seconds <= 0:
            raise ValueError("sse_heartbeat_seconds must be positive")
        if not self.debug and "*" in self.cors_origins:
            logging.getLogger(__name__).warning(
                "CORS allows all origins (*) with FAMILY_REWARDS_DEBUG=false. "
                "Set FAMILY_REWARDS_CORS_ORIGINS to the dashboard origins."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="FAMILY_REWARDS_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
