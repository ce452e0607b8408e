"""Family Rewards HTTP client with live reconciliation.

Wraps ``httpx.AsyncClient`` around the rewards API and keeps a
``LocalView`` in step with the server:

- mutations apply an optimistic local update first, then overwrite it with
  the server's answer; a failed request rolls the member back to what it
  was before the call
- every successful mutation records its inverse on the ``UndoStack``
- ``listen()`` follows ``/api/events``, refetching the snapshot on every
  (re)connect and retrying after a fixed delay when the transport fails

Usage::

    async with RewardsClient("http://localhost:3001") as client:
        await client.fetch_snapshot()
        await client.adjust_stars("zoe", 3)
        await client.undo()
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from functools import partial
from typing import Any, Optional

import httpx

from family_rewards.client.undo import UndoStack
from family_rewards.client.view import LocalView
from family_rewards.config import LEGACY_MAX_COUNT
from family_rewards.core import transitions
from family_rewards.core.errors import RuleViolationError
from family_rewards.models.family import FamilyConfig, MemberConfig, cycle_index
from family_rewards.models.state import CarouselKind, MemberRecord, StateDocument
from family_rewards.models.state import reward_key as reward_key_for
from family_rewards.protocol.emitter import ProtocolSerializationError, parse_sse_data
from family_rewards.protocol.events import ConnectedEvent, RewardsEvent

logger = logging.getLogger(__name__)

FAILED_TO_UPDATE = "Failed to update"

EventCallback = Callable[[RewardsEvent], None]


class RewardsClientError(Exception):
    """A request to the rewards API failed; local state was left as before the call."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_message(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return f"HTTP {exc.response.status_code}"
    return str(exc) or type(exc).__name__


def _worth_retrying(exc: Exception) -> bool:
    """Transport failures and server errors may pass later; 4xx rejections never will."""
    if isinstance(exc, RewardsClientError) and exc.status_code is not None:
        return exc.status_code >= 500
    return True


class RewardsClient:
    """Dashboard-side connection to one rewards server."""

    def __init__(
        self,
        base_url: str,
        *,
        family: Optional[FamilyConfig] = None,
        reconnect_delay: float = 3.0,
        max_reconnect_attempts: Optional[int] = None,
        http: Optional[httpx.AsyncClient] = None,
        undo_limit: Optional[int] = None,
    ) -> None:
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=10.0)
        self._owns_http = http is None
        self.family = family
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.view = LocalView()
        self.undo_stack = UndoStack(limit=undo_limit, keep_failed=_worth_retrying)
        self.last_error: Optional[str] = None
        self._failures = 0

    async def __aenter__(self) -> "RewardsClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # =========================================================================
    # Snapshot
    # =========================================================================

    async def fetch_snapshot(self) -> StateDocument:
        """Load the full document and replace the local view with it."""
        try:
            response = await self._http.get("/api/state")
            response.raise_for_status()
            document = StateDocument.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            self.last_error = "Failed to load state"
            raise RewardsClientError(_error_message(exc)) from exc
        self.view.replace(document)
        return document

    # =========================================================================
    # Mutations
    # =========================================================================

    async def adjust_stars(self, member_id: str, delta: int) -> int:
        data = await self._mutate(
            member_id, "/api/stars", {"id": member_id, "delta": delta},
            lambda record: transitions.adjust_stars(record, delta),
        )
        stars = int(data["stars"])
        self.view.record(member_id).stars = stars

        # The server reports what it actually applied; the local copy may be stale.
        applied = int(data["applied"])
        if applied:
            self.undo_stack.record(
                f"stars {member_id} {applied:+d}", partial(self.adjust_stars, member_id, -applied)
            )
        return stars

    async def complete(self, member_id: str, delta: int) -> int:
        """Legacy one-unit step (+1 / -1)."""
        data = await self._mutate(
            member_id, "/api/complete", {"id": member_id, "delta": delta},
            lambda record: transitions.complete_unit(record, delta, ceiling=LEGACY_MAX_COUNT),
        )
        count = int(data["count"])
        self.view.record(member_id).stars = count

        if int(data["applied"]):
            self.undo_stack.record(
                f"complete {member_id} {delta:+d}", partial(self.complete, member_id, -delta)
            )
        return count

    async def set_index(self, member_id: str, which: CarouselKind, index: int) -> int:
        before = self.view.copy_of(member_id) or MemberRecord()
        previous = before.task_index if which == "task" else before.reward_index
        data = await self._mutate(
            member_id, "/api/index", {"id": member_id, "which": which, "index": index},
            lambda record: transitions.set_index(record, which, index),
        )
        index = int(data["index"])
        transitions.set_index(self.view.record(member_id), which, index)

        if index != previous:
            self.undo_stack.record(
                f"{which} {member_id} -> {index}", partial(self.set_index, member_id, which, previous)
            )
        return index

    async def redeem(self, member_id: str, cost: int, reward_key: Optional[str] = None) -> int:
        """Redeem a reward. Returns the new redemption count for its key."""
        return await self._redemption("redeem", member_id, cost, reward_key)

    async def undo_redeem(self, member_id: str, cost: int, reward_key: Optional[str] = None) -> int:
        """Refund one redemption. Returns the remaining count for its key."""
        return await self._redemption("undo", member_id, cost, reward_key)

    async def undo(self) -> Optional[str]:
        """Undo the most recent local mutation. Returns its label, or None if nothing to undo."""
        return await self.undo_stack.undo()

    # =========================================================================
    # Family-config helpers
    # =========================================================================

    def _member_config(self, member_id: str) -> MemberConfig:
        if self.family is None:
            raise RewardsClientError("No family configuration loaded")
        try:
            return self.family.member(member_id)
        except KeyError:
            raise RewardsClientError(f"Unknown member: {member_id}") from None

    async def cycle_task(self, member_id: str, step: int = 1) -> int:
        member = self._member_config(member_id)
        current = self.view.record(member_id).task_index
        return await self.set_index(member_id, "task", cycle_index(current, len(member.tasks), step))

    async def cycle_reward(self, member_id: str, step: int = 1) -> int:
        member = self._member_config(member_id)
        current = self.view.record(member_id).reward_index
        return await self.set_index(member_id, "reward", cycle_index(current, len(member.rewards), step))

    async def award_task_unit(self, member_id: str, unit: int = 0, undo: bool = False) -> int:
        """Grant (or take back, with ``undo=True``) the points of the current task's unit."""
        member = self._member_config(member_id)
        task = member.task_at(self.view.record(member_id).task_index)
        if task is None:
            raise RewardsClientError(f"{member_id} has no tasks configured")
        points = task.points(unit)
        return await self.adjust_stars(member_id, -points if undo else points)

    async def redeem_current_reward(self, member_id: str) -> int:
        member = self._member_config(member_id)
        current = member.reward_at(self.view.record(member_id).reward_index)
        if current is None:
            raise RewardsClientError(f"{member_id} has no rewards configured")
        key, reward = current
        return await self.redeem(member_id, reward.cost, key)

    # =========================================================================
    # Live updates
    # =========================================================================

    async def listen(
        self,
        on_event: Optional[EventCallback] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """Follow the notification stream until ``stop`` is set or the task is cancelled.

        Transport failures are retried after ``reconnect_delay`` seconds with
        no backoff growth.  With ``max_reconnect_attempts=None`` this retries
        forever; otherwise ``RewardsClientError`` is raised once that many
        consecutive reconnects have failed.
        """
        self._failures = 0
        while stop is None or not stop.is_set():
            try:
                await self._stream_once(on_event, stop)
            except (httpx.HTTPError, ProtocolSerializationError, RewardsClientError) as exc:
                self._failures += 1
                limit = self.max_reconnect_attempts
                if limit is not None and self._failures > limit:
                    raise RewardsClientError(
                        f"Event stream unavailable after {self._failures} attempts: {exc}"
                    ) from exc
                logger.warning(
                    f"Event stream error ({exc}); reconnecting in {self.reconnect_delay}s "
                    f"(attempt {self._failures})"
                )
            if stop is not None and stop.is_set():
                break
            await asyncio.sleep(self.reconnect_delay)

    async def _stream_once(
        self, on_event: Optional[EventCallback], stop: Optional[asyncio.Event]
    ) -> None:
        async with self._http.stream(
            "GET",
            "/api/events",
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(10.0, read=None),
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                event = parse_sse_data(line)
                if event is None:
                    continue
                if isinstance(event, ConnectedEvent):
                    self._failures = 0
                    await self.fetch_snapshot()
                else:
                    self.view.apply_event(event)
                if on_event is not None:
                    on_event(event)
                if stop is not None and stop.is_set():
                    return

    # =========================================================================
    # Internals
    # =========================================================================

    async def _redemption(
        self, action: str, member_id: str, cost: int, reward_key: Optional[str]
    ) -> int:
        known = self.view.members.get(member_id)
        key = reward_key or reward_key_for(known.reward_index if known else 0)

        def predict(optimistic: MemberRecord) -> object:
            if action == "redeem":
                return transitions.redeem(optimistic, member_id, key, cost)
            return transitions.undo_redeem(optimistic, member_id, key, cost)

        data = await self._mutate(
            member_id, "/api/redeem",
            {"id": member_id, "rewardKey": key, "cost": cost, "action": action},
            predict,
        )
        key = str(data["rewardKey"])
        count = int(data["redeemedCount"])
        record = self.view.record(member_id)
        record.stars = int(data["stars"])
        if count > 0:
            record.redemptions[key] = count
        else:
            record.redemptions.pop(key, None)

        inverse = self.undo_redeem if action == "redeem" else self.redeem
        self.undo_stack.record(f"{action} {member_id} {key}", partial(inverse, member_id, cost, key))
        return count

    async def _mutate(
        self,
        member_id: str,
        path: str,
        body: dict[str, Any],
        predict: Callable[[MemberRecord], object],
    ) -> dict[str, Any]:
        """POST a mutation with an optimistic local update and rollback on failure."""
        before = self.view.copy_of(member_id)
        try:
            predict(self.view.record(member_id))
        except RuleViolationError:
            # The server has the final word; the local copy may be stale.
            self.view.restore(member_id, before)

        try:
            response = await self._http.post(path, json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.view.restore(member_id, before)
            self.last_error = FAILED_TO_UPDATE
            status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
            logger.warning(f"{path} for {member_id} failed: {_error_message(exc)}")
            raise RewardsClientError(_error_message(exc), status_code=status) from exc

        self.last_error = None
        return data
