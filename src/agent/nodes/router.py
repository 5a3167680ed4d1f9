"""Intent router node: classifies free-text operator messages."""

from typing import Any, Dict

from loguru import logger

from agent.nodes.base import BaseNode
from agent.prompts.router_prompt import ROUTER_SYSTEM, build_router_prompt, parse_intent_line
from infra.cancellation import OperationCancelled
from infra.models import ChatMessage, RoutedIntent


class IntentRouterNode(BaseNode):
    """Returns ``{"intent": RoutedIntent}``; any failure routes to chat.

    Input state keys: ``text`` and optionally ``cancel``.
    """

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        messages = [
            ChatMessage(role="system", content=ROUTER_SYSTEM),
            ChatMessage(role="user", content=build_router_prompt(state["text"])),
        ]
        try:
            routed = await self._structured_with_fallback(
                messages,
                RoutedIntent,
                parse_intent_line,
                cancel=state.get("cancel"),
                context="router",
            )
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Intent routing fallback: {e}")
            routed = RoutedIntent()

        logger.debug(f"Routed intent: {routed.intent.value} arg={routed.argument!r}")
        return {"intent": routed}
