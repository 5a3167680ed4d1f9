"""
Live checks of the heartbeat summary and intent routing against a real
reasoning service. Requires OPENAI_API_KEY (marked with @pytest.mark.live).
"""

import pytest

from agent.nodes.router import IntentRouterNode
from agent.nodes.summarizer import SummarizerNode
from infra.cancellation import CancelToken
from infra.models import RoutedIntent
from storage.context_docs import ContextDoc
from storage.state import AgentState

NEW_DOCS = {
    "dataroma": [
        ContextDoc(
            "dataroma/live-1",
            {"investor": "Example Capital", "date_utc": "2024-05-01"},
            "Added 1,200,000 shares of AAPL; reduced MSFT by 30%.",
        )
    ],
    "vic": [],
}


@pytest.mark.live
class TestHeartbeatSummary:
    @pytest.mark.asyncio
    async def test_summary_is_produced(self, live_llm_client, settings) -> None:
        node = SummarizerNode(live_llm_client, settings)
        result = await node({"agent_state": AgentState(), "cancel": CancelToken(), "new_docs": NEW_DOCS})

        assert result["reasoning_ok"], result.get("error")
        assert result["summary"].strip()
        assert result["agent_state"].last_reasoning_call_at is not None


@pytest.mark.live
class TestIntentRouting:
    @pytest.mark.asyncio
    async def test_returns_routed_intent(self, live_llm_client) -> None:
        node = IntentRouterNode(live_llm_client)
        result = await node({"text": "please give me a deep dive on AAPL", "cancel": CancelToken()})

        assert isinstance(result["intent"], RoutedIntent)
