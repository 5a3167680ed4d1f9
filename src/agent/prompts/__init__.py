"""Prompt templates for the reasoning service."""

from agent.prompts.analysis_prompt import build_cycle_request, build_ticker_request
from agent.prompts.context_prompt import PREAMBLE, build_system_context, safe_system_context, top_tickers
from agent.prompts.router_prompt import ROUTER_SYSTEM, build_router_prompt, parse_intent_line

__all__ = [
    "PREAMBLE",
    "ROUTER_SYSTEM",
    "build_cycle_request",
    "build_router_prompt",
    "build_system_context",
    "build_ticker_request",
    "parse_intent_line",
    "safe_system_context",
    "top_tickers",
]
