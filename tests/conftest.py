"""Shared fixtures and configuration for the agent tests."""

import os
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure the src/ packages are importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from infra.llm_client import BaseLLMClient, create_llm_client  # noqa: E402
from utils.config import DEFAULT_OPENAI_BASE_URL, Settings  # noqa: E402
from tests.fixtures.fakes import PRIMARY_CHAT  # noqa: E402


# --- Markers ---


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "live: tests that call a real reasoning service")


# --- Fixtures ---


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Settings rooted in ``tmp_path``, ignoring any local .env file."""

    def _make(**overrides: Any) -> Settings:
        values = dict(
            telegram_bot_token="test-token",
            telegram_chat_id=PRIMARY_CHAT,
            openai_api_key="test-key",
            out_dir=str(tmp_path),
            dataroma_context_path=str(tmp_path / "dataroma_context.txt"),
            foxland_context_path=str(tmp_path / "foxland_context.txt"),
            agent_default_pipeline="default",
            agent_intent_routing=False,
            redis_host=None,
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


@pytest.fixture
def live_llm_client(make_settings: Callable[..., Settings]) -> BaseLLMClient:
    """Client for the configured reasoning service.

    Skips if OPENAI_API_KEY is not set.
    """
    api_key = os.getenv("OPENAI_API_KEY", "")
    if not api_key:
        pytest.skip("OPENAI_API_KEY not set")
    config = make_settings(
        llm_provider=os.getenv("LLM_PROVIDER", "openai"),
        openai_api_key=api_key,
        openai_base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
    )
    return create_llm_client(config)
