"""
Agent state persistence backends.
Uses Redis when REDIS_HOST is configured and reachable; falls back to the JSON file otherwise.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import redis as redis_lib
from loguru import logger

from storage.state import AgentState
from utils.config import Settings


class BaseStateStore(ABC):
    """Load/save the single agent state document."""

    @abstractmethod
    def load(self) -> AgentState:
        """Return the saved state, or a fresh one when absent or unreadable."""

    @abstractmethod
    def save(self, state: AgentState) -> None:
        """Persist ``state`` with atomic-replace semantics."""


class FileStateStore(BaseStateStore):
    """State kept in a JSON file, replaced atomically on every save."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def load(self) -> AgentState:
        return AgentState.load(self.path)

    def save(self, state: AgentState) -> None:
        state.save(self.path)

    def __repr__(self) -> str:
        return f"FileStateStore({self.path})"


class RedisStateStore(BaseStateStore):
    """State kept as one JSON string under ``key``. ``SET`` replaces it atomically."""

    def __init__(self, client: "redis_lib.Redis", key: str) -> None:
        self.client = client
        self.key = key

    def load(self) -> AgentState:
        try:
            raw = self.client.get(self.key)
        except redis_lib.RedisError as e:
            logger.warning(f"⚠️ Redis state load failed, starting fresh: {e}")
            return AgentState()
        if raw is None:
            logger.info(f"No agent state under redis key {self.key}, starting fresh")
            return AgentState()
        try:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        except UnicodeDecodeError as e:
            logger.warning(f"⚠️ Redis state under {self.key} is not UTF-8, starting fresh: {e}")
            return AgentState()
        return AgentState.from_json(text)

    def save(self, state: AgentState) -> None:
        self.client.set(self.key, state.to_json())

    def __repr__(self) -> str:
        return f"RedisStateStore({self.key})"


def _init_redis(config: Settings) -> Optional["redis_lib.Redis"]:
    """Return a connected Redis client, or None if REDIS_HOST is unset or unreachable."""
    if not config.redis_host:
        return None
    try:
        client = redis_lib.Redis(host=config.redis_host, port=int(config.redis_port), socket_timeout=3)
        client.ping()
        logger.info(f"✅ Redis initialized: {config.redis_host}:{config.redis_port}")
        return client
    except Exception as e:
        logger.warning(f"⚠️ Redis init failed, using file state fallback: {e}")
        return None


def create_state_store(config: Settings) -> BaseStateStore:
    client = _init_redis(config)
    if client is not None:
        return RedisStateStore(client, config.redis_state_key)
    logger.info(f"📝 Agent state file: {config.agent_state_path}")
    return FileStateStore(config.agent_state_path)
