"""Tests for RewardsClient: optimistic updates, rollback, undo and live listening."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from family_rewards.client.sync import FAILED_TO_UPDATE, RewardsClient, RewardsClientError
from family_rewards.models.family import FamilyConfig
from family_rewards.protocol.emitter import HEARTBEAT_FRAME, emit
from family_rewards.protocol.events import (
    ConnectedEvent,
    IndexUpdatedEvent,
    RewardsEvent,
    StarsUpdatedEvent,
)

FAMILY = FamilyConfig.model_validate(
    {
        "members": [
            {
                "id": "zoe",
                "tasks": [
                    {"title": "Reading", "units": [{"label": "1 page", "stars": 1}, {"label": "chapter", "stars": 3}]},
                    {"title": "Dishes", "stars": 2},
                ],
                "rewards": [{"title": "Sticker", "cost": 2}, {"title": "Movie", "cost": 10}],
            }
        ]
    }
)


@pytest_asyncio.fixture
async def rewards_client(app: FastAPI) -> AsyncIterator[RewardsClient]:
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    async with http:
        yield RewardsClient("http://test", family=FAMILY, http=http, reconnect_delay=0)


async def _server_record(client: RewardsClient, member_id: str):
    response = await client._http.get("/api/state")
    return response.json()["members"].get(member_id)


class TestMutations:
    @pytest.mark.anyio
    async def test_adjust_stars_updates_view(self, rewards_client: RewardsClient) -> None:
        assert await rewards_client.adjust_stars("zoe", 5) == 5
        assert rewards_client.view.members["zoe"].stars == 5
        assert rewards_client.last_error is None

    @pytest.mark.anyio
    async def test_undo_reverts_on_server(self, rewards_client: RewardsClient) -> None:
        await rewards_client.adjust_stars("zoe", 5)

        assert await rewards_client.undo() == "stars zoe +5"

        assert rewards_client.view.members["zoe"].stars == 0
        assert (await _server_record(rewards_client, "zoe"))["stars"] == 0
        assert len(rewards_client.undo_stack) == 0

    @pytest.mark.anyio
    async def test_undo_uses_applied_change_after_floor(self, rewards_client: RewardsClient) -> None:
        await rewards_client.adjust_stars("zoe", 2)
        await rewards_client.adjust_stars("zoe", -5)

        await rewards_client.undo()

        assert (await _server_record(rewards_client, "zoe"))["stars"] == 2

    @pytest.mark.anyio
    async def test_no_op_change_records_no_undo(self, rewards_client: RewardsClient) -> None:
        await rewards_client.adjust_stars("zoe", -1)
        assert len(rewards_client.undo_stack) == 0
        assert await rewards_client.undo() is None

    @pytest.mark.anyio
    async def test_set_index_undo_restores_previous(self, rewards_client: RewardsClient) -> None:
        await rewards_client.set_index("zoe", "task", 1)
        await rewards_client.set_index("zoe", "task", 0)
        await rewards_client.set_index("zoe", "task", 1)

        await rewards_client.undo()

        assert (await _server_record(rewards_client, "zoe"))["taskIndex"] == 0
        assert rewards_client.view.members["zoe"].task_index == 0

    @pytest.mark.anyio
    async def test_complete_and_undo(self, rewards_client: RewardsClient) -> None:
        assert await rewards_client.complete("x", 1) == 1
        await rewards_client.undo()
        assert (await _server_record(rewards_client, "x"))["stars"] == 0

    @pytest.mark.anyio
    async def test_redeem_and_undo_via_stack(self, rewards_client: RewardsClient) -> None:
        await rewards_client.adjust_stars("zoe", 10)
        assert await rewards_client.redeem("zoe", 4, "reward:1") == 1
        assert rewards_client.view.members["zoe"].stars == 6
        assert rewards_client.view.members["zoe"].redemptions == {"reward:1": 1}

        await rewards_client.undo()

        record = await _server_record(rewards_client, "zoe")
        assert record["stars"] == 10
        assert record["redemptions"] == {}
        assert rewards_client.view.members["zoe"].redemptions == {}


class TestConcurrentClients:
    @pytest.mark.anyio
    async def test_undo_reverses_only_own_change(
        self, rewards_client: RewardsClient, app: FastAPI
    ) -> None:
        """Another client's points survive this client's undo."""
        await rewards_client.fetch_snapshot()
        await app.state.rewards.adjust_stars("zoe", 10)

        await rewards_client.adjust_stars("zoe", 2)
        assert await rewards_client.undo() == "stars zoe +2"

        assert (await _server_record(rewards_client, "zoe"))["stars"] == 10
        assert rewards_client.view.members["zoe"].stars == 10

    @pytest.mark.anyio
    async def test_undo_of_deduction_after_remote_spend(
        self, rewards_client: RewardsClient, app: FastAPI
    ) -> None:
        await app.state.rewards.adjust_stars("zoe", 5)
        await rewards_client.fetch_snapshot()
        await app.state.rewards.adjust_stars("zoe", -4)

        await rewards_client.adjust_stars("zoe", -3)
        await rewards_client.undo()

        assert (await _server_record(rewards_client, "zoe"))["stars"] == 1

    @pytest.mark.anyio
    async def test_rejected_undo_does_not_block_older_steps(
        self, rewards_client: RewardsClient, app: FastAPI
    ) -> None:
        await rewards_client.adjust_stars("zoe", 5)
        await rewards_client.redeem("zoe", 2, "reward:0")
        await app.state.rewards.undo_redeem("zoe", 2, "reward:0")

        with pytest.raises(RewardsClientError) as exc:
            await rewards_client.undo()

        assert exc.value.status_code == 400
        assert rewards_client.undo_stack.labels() == ["stars zoe +5"]
        assert await rewards_client.undo() == "stars zoe +5"
        assert (await _server_record(rewards_client, "zoe"))["stars"] == 0
        assert len(rewards_client.undo_stack) == 0

    @pytest.mark.anyio
    async def test_server_error_keeps_undo_step(self) -> None:
        responses = iter(
            [
                httpx.Response(200, json={"id": "zoe", "stars": 3, "applied": 3}),
                httpx.Response(500, json={"error": "Could not save state", "code": "persistence_failed"}),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with http:
            client = RewardsClient("http://test", http=http)
            await client.adjust_stars("zoe", 3)
            with pytest.raises(RewardsClientError):
                await client.undo()
            assert client.undo_stack.labels() == ["stars zoe +3"]


class TestRollback:
    @pytest.mark.anyio
    async def test_rejected_redeem_rolls_back(self, rewards_client: RewardsClient) -> None:
        await rewards_client.adjust_stars("zoe", 3)
        undo_depth = len(rewards_client.undo_stack)

        with pytest.raises(RewardsClientError) as exc:
            await rewards_client.redeem("zoe", 4, "reward:0")

        assert exc.value.status_code == 400
        assert str(exc.value).startswith("Not enough points")
        assert rewards_client.last_error == FAILED_TO_UPDATE
        assert rewards_client.view.members["zoe"].stars == 3
        assert rewards_client.view.members["zoe"].redemptions == {}
        assert len(rewards_client.undo_stack) == undo_depth

    @pytest.mark.anyio
    async def test_stale_local_view_defers_to_server(
        self, rewards_client: RewardsClient, app: FastAPI
    ) -> None:
        """Another client added stars; the local view does not know yet."""
        await app.state.rewards.adjust_stars("zoe", 10)

        assert await rewards_client.redeem("zoe", 4, "reward:0") == 1
        assert rewards_client.view.members["zoe"].stars == 6

    @pytest.mark.anyio
    async def test_unreachable_server_rolls_back(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with RewardsClient("http://test", http=http) as client:
            client.view.record("zoe").stars = 1

            with pytest.raises(RewardsClientError) as exc:
                await client.adjust_stars("zoe", 3)

            assert exc.value.status_code is None
            assert client.view.members["zoe"].stars == 1
            assert client.last_error == FAILED_TO_UPDATE
        await http.aclose()

    @pytest.mark.anyio
    async def test_unknown_member_rolls_back_to_absent(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "Could not save state", "code": "persistence_failed"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with http:
            client = RewardsClient("http://test", http=http)
            with pytest.raises(RewardsClientError) as exc:
                await client.set_index("ghost", "task", 2)
            assert exc.value.status_code == 500
            assert str(exc.value) == "Could not save state"
            assert "ghost" not in client.view.members


class TestFamilyHelpers:
    @pytest.mark.anyio
    async def test_award_task_unit(self, rewards_client: RewardsClient) -> None:
        assert await rewards_client.award_task_unit("zoe", unit=1) == 3
        assert await rewards_client.award_task_unit("zoe", unit=1, undo=True) == 0

    @pytest.mark.anyio
    async def test_cycle_task_and_award(self, rewards_client: RewardsClient) -> None:
        assert await rewards_client.cycle_task("zoe") == 1
        assert await rewards_client.award_task_unit("zoe") == 2

    @pytest.mark.anyio
    async def test_cycle_reward_wraps(self, rewards_client: RewardsClient) -> None:
        assert await rewards_client.cycle_reward("zoe", step=-1) == 1
        assert await rewards_client.cycle_reward("zoe") == 0

    @pytest.mark.anyio
    async def test_redeem_current_reward(self, rewards_client: RewardsClient) -> None:
        await rewards_client.adjust_stars("zoe", 12)
        await rewards_client.cycle_reward("zoe")

        assert await rewards_client.redeem_current_reward("zoe") == 1
        assert rewards_client.view.members["zoe"].stars == 2
        assert rewards_client.view.members["zoe"].redemptions == {"reward:1": 1}

    @pytest.mark.anyio
    async def test_unknown_member(self, rewards_client: RewardsClient) -> None:
        with pytest.raises(RewardsClientError):
            await rewards_client.cycle_task("nobody")


class TestSnapshot:
    @pytest.mark.anyio
    async def test_fetch_snapshot_replaces_view(self, rewards_client: RewardsClient, app: FastAPI) -> None:
        await app.state.rewards.adjust_stars("liz", 4)
        rewards_client.view.record("stale").stars = 1

        document = await rewards_client.fetch_snapshot()

        assert document.members["liz"].stars == 4
        assert set(rewards_client.view.members) == {"liz"}


def _stream_body(*events: RewardsEvent) -> bytes:
    frames = [emit(ConnectedEvent(subscriber_id="s1")), HEARTBEAT_FRAME]
    frames.extend(emit(event) for event in events)
    return "".join(frames).encode()


class TestListen:
    @pytest.mark.anyio
    async def test_events_applied_and_snapshot_fetched(self) -> None:
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if request.url.path == "/api/state":
                return httpx.Response(200, json={"members": {"zoe": {"stars": 1}}})
            return httpx.Response(
                200,
                content=_stream_body(
                    StarsUpdatedEvent(id="zoe", stars=4),
                    IndexUpdatedEvent(id="liz", which="reward", index=2),
                ),
                headers={"Content-Type": "text/event-stream"},
            )

        received: list[RewardsEvent] = []
        stop = asyncio.Event()

        def on_event(event: RewardsEvent) -> None:
            received.append(event)
            if isinstance(event, IndexUpdatedEvent):
                stop.set()

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with http:
            client = RewardsClient("http://test", http=http, reconnect_delay=0)
            await asyncio.wait_for(client.listen(on_event=on_event, stop=stop), timeout=5)

        assert calls == ["/api/events", "/api/state"]
        assert [event.type for event in received] == ["connected", "stars-updated", "index-updated"]
        assert client.view.members["zoe"].stars == 4
        assert client.view.members["liz"].reward_index == 2
        assert client.view.recently_synced("liz")

    @pytest.mark.anyio
    async def test_reconnects_after_failure(self) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            if request.url.path == "/api/state":
                return httpx.Response(200, json={"members": {}})
            attempts += 1
            if attempts < 3:
                raise httpx.ConnectError("server restarting", request=request)
            return httpx.Response(200, content=_stream_body(StarsUpdatedEvent(id="zoe", stars=9)))

        stop = asyncio.Event()

        def on_event(event: RewardsEvent) -> None:
            if isinstance(event, StarsUpdatedEvent):
                stop.set()

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with http:
            client = RewardsClient("http://test", http=http, reconnect_delay=0)
            await asyncio.wait_for(client.listen(on_event=on_event, stop=stop), timeout=5)

        assert attempts == 3
        assert client.view.members["zoe"].stars == 9

    @pytest.mark.anyio
    async def test_gives_up_after_max_attempts(self) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("down", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with http:
            client = RewardsClient("http://test", http=http, reconnect_delay=0, max_reconnect_attempts=2)
            with pytest.raises(RewardsClientError):
                await asyncio.wait_for(client.listen(), timeout=5)

        assert attempts == 3

    @pytest.mark.anyio
    async def test_stop_before_start(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        stop = asyncio.Event()
        stop.set()
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with http:
            client = RewardsClient("http://test", http=http)
            await client.listen(stop=stop)
