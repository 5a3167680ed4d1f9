"""LangGraph heartbeat workflow assembly.

Topology:
    [START] -> [Pipeline] -> [Collector] -> [Summarizer] -> [END]
                                        \\-> [END]   (nothing new, cooldown active)
"""

from typing import Any, Awaitable, Callable, Dict, Optional

from langgraph.graph import END, StateGraph

from agent.nodes.collector import DocumentCollectorNode
from agent.nodes.pipeline import PipelineNode
from agent.nodes.summarizer import SummarizerNode
from agent.state import CycleState
from infra.cancellation import CancelToken
from infra.llm_client import BaseLLMClient
from jobs.engine import JobEngine
from storage.state import AgentState
from utils.config import Settings


def _wrap(node: Callable[[CycleState], Awaitable[Dict[str, Any]]]):
    async def _node(state: CycleState) -> Dict[str, Any]:
        return await node(state)

    return _node


def route_after_collect(state: CycleState) -> str:
    """Route after Collector: summarize when due, else END."""
    return "summarizer" if state.get("reasoning_due") else END


def build_heartbeat_graph(
    engine: JobEngine,
    llm_client: BaseLLMClient,
    config: Settings,
    on_reasoning_attempt: Optional[Callable[[AgentState], Awaitable[None]]] = None,
):
    """Build the heartbeat graph: Pipeline -> Collector -> (Summarizer | END).

    Args:
        engine: Job engine running the refresh pipeline.
        llm_client: Reasoning service client for the Summarizer node.
        config: Settings providing the pipeline name, document sources and limits.
        on_reasoning_attempt: Called with the agent state right after the
            attempt is stamped, before the reasoning request is sent.
    """
    graph = StateGraph(CycleState)
    graph.add_node("pipeline", _wrap(PipelineNode(engine, config.agent_default_pipeline)))
    graph.add_node(
        "collector",
        _wrap(
            DocumentCollectorNode(
                config.document_sources,
                config.agent_max_docs_per_source,
                config.agent_min_minutes_between_cycle_analysis,
            )
        ),
    )
    graph.add_node("summarizer", _wrap(SummarizerNode(llm_client, config, on_reasoning_attempt)))

    graph.set_entry_point("pipeline")
    graph.add_edge("pipeline", "collector")
    graph.add_conditional_edges("collector", route_after_collect)
    graph.add_edge("summarizer", END)
    return graph.compile()


async def run_heartbeat_cycle(
    compiled_graph: Any,
    agent_state: AgentState,
    cancel: CancelToken,
) -> CycleState:
    """Run one heartbeat cycle through the graph and return the final state."""
    initial_state: CycleState = {
        "agent_state": agent_state,
        "cancel": cancel,
        "pipeline_ok": False,
        "new_docs": {},
        "reasoning_due": False,
        "summary": None,
        "reasoning_ok": False,
        "error": None,
    }
    return await compiled_graph.ainvoke(initial_state)
