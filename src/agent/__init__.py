"""Agent orchestration: event loop, command router and the LangGraph heartbeat workflow."""
