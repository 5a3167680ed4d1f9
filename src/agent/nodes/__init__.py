"""Agent workflow nodes."""

from agent.nodes.collector import DocumentCollectorNode
from agent.nodes.pipeline import PipelineNode
from agent.nodes.router import IntentRouterNode
from agent.nodes.summarizer import SummarizerNode

__all__ = ["DocumentCollectorNode", "IntentRouterNode", "PipelineNode", "SummarizerNode"]
