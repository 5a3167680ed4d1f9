"""Tests for the agent loop: poll timing, message handling and shutdown."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from agent.commands import HELP_TEXT
from agent.orchestrator import Orchestrator, poll_timeout
from infra.cancellation import CancelToken
from messaging.gateway import GatewayError
from storage.state import AgentState
from storage.state_store import BaseStateStore, FileStateStore
from tests.fixtures.fakes import FakeGateway, FakeLLMClient, PRIMARY_CHAT, ScriptedJob, inbound, make_catalog


class BlockingGateway(FakeGateway):
    """Gateway whose poll never returns on its own."""

    async def poll_messages(self, timeout_seconds: int):
        self.poll_timeouts.append(timeout_seconds)
        await asyncio.Event().wait()
        return []


class SlowStore(BaseStateStore):
    """Store whose save blocks the calling thread, like a stalled Redis round trip."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.saved = []

    def load(self) -> AgentState:
        return AgentState()

    def save(self, state: AgentState) -> None:
        time.sleep(self.delay)
        self.saved.append(state.cycle_count)


def _build(settings, tmp_path, gateway, llm=None, job=None):
    job = job or ScriptedJob()
    catalog = make_catalog({"refresh": job}, {"default": ["refresh"]})
    store = FileStateStore(str(tmp_path / "agent_state.json"))
    return Orchestrator(settings, gateway, llm or FakeLLMClient(default_reply="cycle summary"), catalog, state_store=store)


class TestPollTimeout:
    def test_clamped_to_bounds(self) -> None:
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert poll_timeout(now - timedelta(seconds=10), now) == 1
        assert poll_timeout(now, now) == 1
        assert poll_timeout(now + timedelta(seconds=7.2), now) == 8
        assert poll_timeout(now + timedelta(minutes=30), now) == 30


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_messages_then_heartbeat_then_shutdown(self, settings, tmp_path) -> None:
        root = CancelToken()
        gateway = FakeGateway([[inbound("/help", id=1), inbound("/status", id=2)]], on_exhausted=root.cancel)
        job = ScriptedJob()
        orch = _build(settings, tmp_path, gateway, job=job)

        await asyncio.wait_for(orch.run(root), timeout=5)

        assert gateway.poll_timeouts == [1, 30]
        texts = gateway.texts(PRIMARY_CHAT)
        assert texts[0] == HELP_TEXT
        assert texts[1].startswith("Status\n")
        assert "Cycle count: 0" in texts[1]
        assert texts[-1] == "cycle summary"
        assert job.calls == 1
        assert AgentState.load(tmp_path / "agent_state.json").cycle_count == 1

    @pytest.mark.asyncio
    async def test_state_is_resumed_on_start(self, settings, tmp_path) -> None:
        AgentState(cycle_count=41).save(tmp_path / "agent_state.json")
        root = CancelToken()
        # One empty batch so a heartbeat runs before the script is exhausted
        gateway = FakeGateway([[]], on_exhausted=root.cancel)
        orch = _build(settings, tmp_path, gateway)

        await asyncio.wait_for(orch.run(root), timeout=5)

        assert orch.state.cycle_count == 42

    @pytest.mark.asyncio
    async def test_poll_error_is_tolerated(self, settings, tmp_path) -> None:
        root = CancelToken()
        gateway = FakeGateway([GatewayError("getUpdates failed"), [inbound("/help")]], on_exhausted=root.cancel)
        orch = _build(settings, tmp_path, gateway)

        await asyncio.wait_for(orch.run(root), timeout=5)

        assert HELP_TEXT in gateway.texts()
        assert orch.state.cycle_count == 1

    @pytest.mark.asyncio
    async def test_failing_message_does_not_stop_the_batch(self, settings, tmp_path) -> None:
        root = CancelToken()
        gateway = FakeGateway([[inbound("explode", id=1), inbound("/help", id=2)]], on_exhausted=root.cancel)
        orch = _build(settings, tmp_path, gateway)
        original = orch.commands.handle

        async def flaky(text, agent_state, cancel):
            if text == "explode":
                raise RuntimeError("kaput")
            return await original(text, agent_state, cancel)

        orch.commands.handle = flaky
        await asyncio.wait_for(orch.run(root), timeout=5)

        texts = gateway.texts()
        assert texts.index("Error: kaput") < texts.index(HELP_TEXT)

    @pytest.mark.asyncio
    async def test_cancel_during_blocking_poll(self, settings, tmp_path) -> None:
        root = CancelToken()
        gateway = BlockingGateway()
        job = ScriptedJob()
        orch = _build(settings, tmp_path, gateway, job=job)
        asyncio.get_running_loop().call_later(0.05, root.cancel)

        await asyncio.wait_for(orch.run(root), timeout=5)

        assert gateway.poll_timeouts == [1]
        assert job.calls == 0
        assert (tmp_path / "agent_state.json").exists()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_background_runs(self, settings, tmp_path) -> None:
        root = CancelToken()
        gate = asyncio.Event()
        gateway = FakeGateway([[inbound("/run gated")]], on_exhausted=root.cancel)
        catalog = make_catalog({"refresh": ScriptedJob(), "gated": ScriptedJob(gate=gate)}, {"default": ["refresh"]})
        orch = Orchestrator(
            settings, gateway, FakeLLMClient(), catalog,
            state_store=FileStateStore(str(tmp_path / "agent_state.json")),
        )

        await asyncio.wait_for(orch.run(root), timeout=5)

        assert not orch.engine.is_running("gated")
        assert "Cancelled job: gated" in gateway.texts()


class TestMessageHandling:
    @pytest.mark.asyncio
    async def test_empty_message_is_ignored(self, settings, tmp_path) -> None:
        gateway = FakeGateway()
        orch = _build(settings, tmp_path, gateway)

        await orch.handle_message(inbound("   "), CancelToken())

        assert gateway.sent == []
        assert gateway.typing == []

    @pytest.mark.asyncio
    async def test_typing_then_single_reply(self, settings, tmp_path) -> None:
        gateway = FakeGateway()
        orch = _build(settings, tmp_path, gateway)

        await orch.handle_message(inbound("/help"), CancelToken())

        assert gateway.typing == [PRIMARY_CHAT]
        assert gateway.sent == [(PRIMARY_CHAT, HELP_TEXT)]


class TestHeartbeatReporting:
    @pytest.mark.asyncio
    async def test_unexpected_failure_is_reported(self, settings, tmp_path) -> None:
        gateway = FakeGateway()
        orch = _build(settings, tmp_path, gateway)
        orch.heartbeat_graph = SimpleNamespace(ainvoke=AsyncMock(side_effect=RuntimeError("graph broke")))

        await orch.run_heartbeat(CancelToken())

        assert gateway.texts() == ["Heartbeat cycle failed: graph broke"]
        assert orch.state.cycle_count == 0
        assert (tmp_path / "agent_state.json").exists()

    @pytest.mark.asyncio
    async def test_job_notifications_go_to_primary_chat(self, settings, tmp_path) -> None:
        gateway = FakeGateway()
        orch = _build(settings, tmp_path, gateway)
        root = CancelToken()

        assert orch.engine.start_job("refresh", root)
        await orch.engine.join(timeout=2)

        assert gateway.sent == [
            (PRIMARY_CHAT, "Started job: refresh"),
            (PRIMARY_CHAT, "Completed job: refresh"),
        ]

    @pytest.mark.asyncio
    async def test_send_failure_does_not_break_cycle(self, settings, tmp_path) -> None:
        gateway = FakeGateway()
        gateway.send_message = AsyncMock(side_effect=GatewayError("sendMessage failed"))
        orch = _build(settings, tmp_path, gateway)

        await orch.run_heartbeat(CancelToken())

        assert orch.state.cycle_count == 1
        assert orch.state.last_summary == "cycle summary"


class TestStatePersistence:
    @pytest.mark.asyncio
    async def test_slow_store_does_not_block_the_loop(self, settings, tmp_path) -> None:
        gateway = FakeGateway()
        catalog = make_catalog({"refresh": ScriptedJob()}, {"default": ["refresh"]})
        store = SlowStore(delay=0.2)
        orch = Orchestrator(settings, gateway, FakeLLMClient(), catalog, state_store=store)
        ticks = []

        async def ticker() -> None:
            for _ in range(5):
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        task = asyncio.create_task(ticker())
        await orch.run_heartbeat(CancelToken())
        finished_during_cycle = len(ticks)
        await task

        assert store.saved == [0, 1]
        assert finished_during_cycle == 5
        assert max(b - a for a, b in zip(ticks, ticks[1:])) < 0.15
