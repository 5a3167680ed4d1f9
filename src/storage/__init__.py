"""Durable agent state and the document sources read each heartbeat."""

from storage.context_docs import ContextDoc
from storage.state import AgentState, write_atomic
from storage.state_store import BaseStateStore, FileStateStore, RedisStateStore, create_state_store

__all__ = [
    "AgentState",
    "BaseStateStore",
    "ContextDoc",
    "FileStateStore",
    "RedisStateStore",
    "create_state_store",
    "write_atomic",
]
