"""Summarizer node: asks the reasoning service for the heartbeat summary.

The attempt is stamped on the agent state (and persisted through
``on_attempt`` when given) before the request goes out, so a crash mid-call
still honours the cooldown after a restart.
"""

from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from agent.nodes.base import BaseNode
from agent.prompts.analysis_prompt import build_cycle_request
from agent.prompts.context_prompt import safe_system_context
from agent.state import CycleState
from infra.cancellation import OperationCancelled
from infra.llm_client import BaseLLMClient
from infra.models import ChatMessage
from storage.state import AgentState
from utils.config import Settings

UNAVAILABLE_PREFIX = "Analysis unavailable: "


class SummarizerNode(BaseNode):
    """LangGraph node producing the cycle summary, or a placeholder on failure."""

    def __init__(
        self,
        llm_client: BaseLLMClient,
        config: Settings,
        on_attempt: Optional[Callable[[AgentState], Awaitable[None]]] = None,
    ) -> None:
        super().__init__(llm_client)
        self.config = config
        self.on_attempt = on_attempt

    async def __call__(self, state: CycleState) -> Dict[str, Any]:
        agent_state = state["agent_state"]
        messages = [
            ChatMessage(role="system", content=safe_system_context(self.config)),
            ChatMessage(role="user", content=build_cycle_request(state.get("new_docs") or {})),
        ]

        agent_state.mark_reasoning_attempt()
        if self.on_attempt is not None:
            try:
                await self.on_attempt(agent_state)
            except Exception as e:
                logger.warning(f"Could not persist reasoning attempt: {e}")

        try:
            completion = await self._ask(messages, state.get("cancel"), context="heartbeat")
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Heartbeat reasoning call failed: {e}")
            return {
                "agent_state": agent_state,
                "summary": f"{UNAVAILABLE_PREFIX}{e}",
                "reasoning_ok": False,
                "error": str(e),
            }

        logger.info(
            f"Heartbeat summary received ({len(completion.content)} chars, "
            f"tokens {completion.prompt_tokens}/{completion.completion_tokens})"
        )
        return {"agent_state": agent_state, "summary": completion.content, "reasoning_ok": True}
