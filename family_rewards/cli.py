"""family-rewards — Typer application root.

Entry point for the ``family-rewards`` console script::

    family-rewards serve --port 3001
    family-rewards show
    family-rewards stars zoe 3
    family-rewards watch
    family-rewards members family.json
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from family_rewards.client.sync import RewardsClient, RewardsClientError
from family_rewards.config import get_settings
from family_rewards.models.family import FamilyConfig
from family_rewards.protocol.emitter import to_wire
from family_rewards.protocol.events import RewardsEvent

logger = logging.getLogger(__name__)


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad arguments, invalid input, rejected mutation)
    3 — server unreachable / internal error
    """

    SUCCESS = 0
    USER_ERROR = 1
    INTERNAL_ERROR = 3


cli = typer.Typer(
    name="family-rewards",
    help="Family Rewards — chore points with live dashboard sync.",
    no_args_is_help=True,
)


def _api_url(url: Optional[str]) -> str:
    return url or get_settings().api_url


def _fail(exc: RewardsClientError) -> typer.Exit:
    typer.echo(f"❌ {exc}", err=True)
    if exc.status_code is not None and 400 <= exc.status_code < 500:
        return typer.Exit(code=ExitCode.USER_ERROR)
    return typer.Exit(code=ExitCode.INTERNAL_ERROR)


@cli.command("serve", help="Run the rewards API server.")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default from settings)."),
    port: Optional[int] = typer.Option(None, help="Port (default from settings)."),
    reload: bool = typer.Option(False, help="Auto-reload on code changes (development)."),
) -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "family_rewards.main:build_default_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="debug" if settings.debug else "info",
    )


@cli.command("show", help="Print the current state document.")
def show(url: Optional[str] = typer.Option(None, help="API base URL.")) -> None:
    async def _run() -> dict[str, object]:
        async with RewardsClient(_api_url(url)) as client:
            document = await client.fetch_snapshot()
            return document.to_wire()

    try:
        snapshot = asyncio.run(_run())
    except RewardsClientError as exc:
        raise _fail(exc)
    typer.echo(json.dumps(snapshot, indent=2))


@cli.command("stars", help="Add (or with a negative DELTA, remove) stars for a member.")
def stars(
    member_id: str = typer.Argument(..., help="Member id, e.g. zoe."),
    delta: int = typer.Argument(..., help="Signed number of stars."),
    url: Optional[str] = typer.Option(None, help="API base URL."),
) -> None:
    async def _run() -> int:
        async with RewardsClient(_api_url(url)) as client:
            return await client.adjust_stars(member_id, delta)

    try:
        balance = asyncio.run(_run())
    except RewardsClientError as exc:
        raise _fail(exc)
    typer.echo(f"{member_id}: {balance} ★")


@cli.command("watch", help="Print pushed change events, reconnecting like a dashboard.")
def watch(
    url: Optional[str] = typer.Option(None, help="API base URL."),
    max_attempts: Optional[int] = typer.Option(
        None, "--max-attempts", help="Give up after this many failed reconnects (default: never)."
    ),
) -> None:
    settings = get_settings()

    def _print(event: RewardsEvent) -> None:
        typer.echo(json.dumps(to_wire(event)))

    async def _run() -> None:
        async with RewardsClient(
            _api_url(url),
            reconnect_delay=settings.reconnect_delay_seconds,
            max_reconnect_attempts=max_attempts if max_attempts is not None else settings.max_reconnect_attempts,
        ) as client:
            await client.listen(on_event=_print)

    try:
        asyncio.run(_run())
    except RewardsClientError as exc:
        raise _fail(exc)
    except KeyboardInterrupt:
        typer.echo("Stopped.")


@cli.command("members", help="Summarise a family configuration file.")
def members(
    config_path: Optional[Path] = typer.Argument(
        None, help="Family config JSON (default: FAMILY_REWARDS_FAMILY_CONFIG_FILE)."
    ),
) -> None:
    path = config_path or get_settings().family_config_file
    if path is None:
        typer.echo("❌ No family config given.", err=True)
        raise typer.Exit(code=ExitCode.USER_ERROR)
    try:
        family = FamilyConfig.load(path)
    except (OSError, ValueError) as exc:
        typer.echo(f"❌ Could not load {path}: {exc}", err=True)
        raise typer.Exit(code=ExitCode.USER_ERROR)

    for member in family.members:
        costs = ", ".join(f"{reward.title} ({reward.cost})" for reward in member.rewards) or "-"
        typer.echo(
            f"{member.id}: {len(member.tasks)} task(s), {len(member.rewards)} reward(s); costs: {costs}"
        )


if __name__ == "__main__":
    cli()
