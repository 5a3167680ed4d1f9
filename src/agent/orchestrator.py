"""Top-level agent loop.

One asyncio task multiplexes two timers: the operator channel (long poll)
and the heartbeat deadline. Each pass:

    1. poll for up to clamp(1, 30, ceil(seconds until the next heartbeat))
    2. handle the received messages in arrival order
    3. run the heartbeat cycle when it is due, then schedule the next one
       ``heartbeat interval`` after *now* (not after the previous deadline)

The first heartbeat is due at startup. Only the root cancel token ends the loop.
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from loguru import logger

from agent.commands import CommandRouter
from agent.graph import build_heartbeat_graph, run_heartbeat_cycle
from agent.nodes.router import IntentRouterNode
from infra.cancellation import CancelToken, OperationCancelled
from infra.llm_client import BaseLLMClient
from jobs.catalog import JobCatalog
from jobs.engine import JobEngine
from messaging.gateway import BaseGateway, InboundMessage
from storage.state import AgentState
from storage.state_store import BaseStateStore, FileStateStore
from utils.config import Settings

MIN_POLL_SECONDS = 1
MAX_POLL_SECONDS = 30
#: How long shutdown waits for cancelled runs to wind down
SHUTDOWN_JOIN_SECONDS = 15.0


def poll_timeout(next_heartbeat_at: datetime, now: datetime) -> int:
    """Seconds to long-poll: time left before the heartbeat, clamped to [1, 30]."""
    remaining = math.ceil((next_heartbeat_at - now).total_seconds())
    return max(MIN_POLL_SECONDS, min(MAX_POLL_SECONDS, remaining))


class Orchestrator:
    """Owns the agent state and drives commands and heartbeat cycles."""

    def __init__(
        self,
        config: Settings,
        gateway: BaseGateway,
        llm_client: BaseLLMClient,
        catalog: JobCatalog,
        engine: Optional[JobEngine] = None,
        state_store: Optional[BaseStateStore] = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.llm_client = llm_client
        self.primary_channel = config.telegram_chat_id
        self.engine = engine or JobEngine(catalog, self._notify)
        self.state_store = state_store or FileStateStore(config.agent_state_path)
        self.state = AgentState()
        self.next_heartbeat_at: Optional[datetime] = None

        intent_router = IntentRouterNode(llm_client) if config.agent_intent_routing else None
        self.commands = CommandRouter(
            config, self.engine, llm_client, persist=self._save_state, intent_router=intent_router
        )
        self.heartbeat_graph: Any = build_heartbeat_graph(
            self.engine, llm_client, config, on_reasoning_attempt=self._save_state
        )

    async def run(self, cancel: CancelToken) -> None:
        """Run until ``cancel`` fires, then wait for background runs to stop."""
        self.state = await asyncio.to_thread(self.state_store.load)
        self.next_heartbeat_at = datetime.now(timezone.utc)
        logger.info(
            f"🚀 Agent starting (cycle count {self.state.cycle_count}); "
            f"first cycle at {self.next_heartbeat_at.isoformat()}"
        )

        try:
            while not cancel.cancelled:
                try:
                    await self._tick(cancel)
                except OperationCancelled:
                    break
        finally:
            cancel.cancel()
            await self.engine.join(timeout=SHUTDOWN_JOIN_SECONDS)
            await self._save_state(self.state)
            logger.info("Agent stopped")

    async def _tick(self, cancel: CancelToken) -> None:
        timeout = poll_timeout(self.next_heartbeat_at, datetime.now(timezone.utc))
        for message in await self._poll(timeout, cancel):
            await self.handle_message(message, cancel)

        if datetime.now(timezone.utc) >= self.next_heartbeat_at and not cancel.cancelled:
            await self.run_heartbeat(cancel)
            interval = timedelta(minutes=self.config.agent_heartbeat_minutes)
            self.next_heartbeat_at = datetime.now(timezone.utc) + interval
            logger.info(f"Next cycle at {self.next_heartbeat_at.isoformat()}")

    async def _poll(self, timeout: int, cancel: CancelToken) -> list:
        try:
            return await cancel.guard(self.gateway.poll_messages(timeout))
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Poll error: {e}")
            return []

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_message(self, message: InboundMessage, cancel: CancelToken) -> None:
        """Handle one inbound message; errors are reported back to its sender."""
        text = (message.text or "").strip()
        if not text:
            return
        logger.info(f"Received message #{message.id}: {text}")

        await self.gateway.send_typing(message.channel)
        try:
            reply = await self.commands.handle(text, self.state, cancel)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.exception(f"Message #{message.id} failed: {e}")
            reply = f"Error: {e}"

        if reply:
            await self._send(message.channel, reply)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def run_heartbeat(self, cancel: CancelToken) -> None:
        """Run one heartbeat cycle and persist its outcome.

        A cycle that fails unexpectedly is reported to the primary channel and
        does not count as completed.
        """
        logger.info("Heartbeat cycle starting")
        await self.gateway.send_typing(self.primary_channel)
        try:
            result = await run_heartbeat_cycle(self.heartbeat_graph, self.state, cancel)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.exception(f"Heartbeat cycle failed: {e}")
            await self._save_state(self.state)
            await self._send(self.primary_channel, f"Heartbeat cycle failed: {e}")
            return

        self.state = result.get("agent_state", self.state)
        summary = result.get("summary")
        if result.get("reasoning_ok"):
            for source, docs in (result.get("new_docs") or {}).items():
                self.state.mark_seen(source, (doc.doc_id for doc in docs))

        self.state.mark_cycle_complete(summary)
        await self._save_state(self.state)
        logger.info(f"Cycle #{self.state.cycle_count} complete")

        if summary is not None:
            await self._send(self.primary_channel, summary)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _save_state(self, state: AgentState) -> None:
        # Store I/O (file fsync or a Redis round trip) runs off the event loop
        try:
            await asyncio.to_thread(self.state_store.save, state)
        except Exception as e:
            logger.error(f"State save error: {e}")

    async def _send(self, channel: str, text: str) -> None:
        try:
            await self.gateway.send_message(channel, text)
        except Exception as e:
            logger.error(f"Send error: {e}")

    async def _notify(self, text: str) -> None:
        await self.gateway.send_message(self.primary_channel, text)
