"""
Centralised configuration for the value investor agent.

All environment variables are declared once in ``Settings`` (pydantic-settings).
The module-level ``settings`` singleton is the single source of truth; every
other module should import from here instead of calling ``os.getenv`` directly.

Usage:

    from utils.config import settings

    print(settings.agent_heartbeat_minutes)   # typed int, default 30
    print(settings.telegram_chat_id)          # str, "" when unset
"""

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to this file so it's always found regardless of cwd
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Settings: every env var the application reads, with types and defaults
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file.

    pydantic-settings maps ``UPPER_CASE`` env vars to ``lower_case`` fields
    automatically, so ``TELEGRAM_CHAT_ID`` → ``settings.telegram_chat_id``.
    """

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",          # silently ignore unknown env vars
        case_sensitive=False,
    )

    # --- Telegram ------------------------------------------------------------
    telegram_bot_token: str = ""
    #: Primary chat: the only chat accepted for commands, target of heartbeat output
    telegram_chat_id: str = ""

    # --- Reasoning service ---------------------------------------------------
    #: "openai" (any hosted OpenAI-compatible endpoint), "openrouter" or "local"
    llm_provider: str = "openai"
    openai_api_key: str = ""
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    openai_model: str = "gpt-4o"
    openai_max_tokens: int = 500
    openai_temperature: float = 0.2

    # --- Agent loop ----------------------------------------------------------
    agent_heartbeat_minutes: int = 30
    #: Cooldown between heartbeat reasoning calls when no new documents appear
    agent_min_minutes_between_cycle_analysis: int = 720
    agent_max_context_chars: int = 40000
    agent_max_conversation_turns: int = 12
    #: Cap on unseen documents pulled from each source per cycle
    agent_max_docs_per_source: int = 10
    agent_default_pipeline: str = "default"
    #: Classify non-command text with the LLM before falling back to chat
    agent_intent_routing: bool = False

    # --- Data paths (empty → derived from out_dir) ---------------------------
    out_dir: str = "out"
    important_tickers_path: str = ""
    financial_overview_path: str = ""
    dataroma_context_path: str = "dataroma_context.txt"
    vic_context_path: str = ""
    foxland_context_path: str = "foxland_context.txt"
    agent_state_path: str = ""

    # --- Jobs ----------------------------------------------------------------
    #: Optional JSON catalog replacing the built-in job list
    job_catalog_path: Optional[str] = None
    #: Command prefix the built-in jobs run as ``<job_command> <job-name>``
    job_command: str = "value-crawler"

    # --- Redis ---------------------------------------------------------------
    redis_host: Optional[str] = None
    redis_port: int = 6379
    redis_state_key: str = "agent:state"

    # --- Logging -------------------------------------------------------------
    log_dir: str = "logs"
    log_level: str = "INFO"

    # --- Validators ----------------------------------------------------------

    @field_validator("openai_base_url", mode="after")
    @classmethod
    def _strip_base_url(cls, v: str) -> str:
        return (v or DEFAULT_OPENAI_BASE_URL).rstrip("/")

    @field_validator("openai_max_tokens", mode="after")
    @classmethod
    def _clamp_max_tokens(cls, v: int) -> int:
        return int(_clamp(v, 64, 16384))

    @field_validator("openai_temperature", mode="after")
    @classmethod
    def _clamp_temperature(cls, v: float) -> float:
        return _clamp(v, 0.0, 2.0)

    @field_validator("agent_heartbeat_minutes", mode="after")
    @classmethod
    def _clamp_heartbeat(cls, v: int) -> int:
        return int(_clamp(v, 1, 24 * 60))

    @field_validator("agent_min_minutes_between_cycle_analysis", mode="after")
    @classmethod
    def _clamp_cooldown(cls, v: int) -> int:
        return int(_clamp(v, 0, 7 * 24 * 60))

    @field_validator("agent_max_context_chars", mode="after")
    @classmethod
    def _clamp_context_chars(cls, v: int) -> int:
        return int(_clamp(v, 1000, 1_000_000))

    @field_validator("agent_max_conversation_turns", mode="after")
    @classmethod
    def _clamp_turns(cls, v: int) -> int:
        return int(_clamp(v, 1, 200))

    @field_validator("agent_max_docs_per_source", mode="after")
    @classmethod
    def _clamp_docs(cls, v: int) -> int:
        return int(_clamp(v, 1, 100))

    @model_validator(mode="after")
    def _derive_paths(self) -> "Settings":
        """Fill unset data paths relative to ``out_dir``."""
        self.out_dir = self.out_dir.strip() or "out"
        out = Path(self.out_dir)
        if not self.important_tickers_path:
            self.important_tickers_path = str(out / "important_tickers.json")
        if not self.financial_overview_path:
            self.financial_overview_path = str(out / "financial_overview.jsonl")
        if not self.vic_context_path:
            self.vic_context_path = str(out / "vic_context.txt")
        if not self.agent_state_path:
            self.agent_state_path = str(out / "agent_state.json")
        return self

    # --- Computed helpers (not env vars) ------------------------------------

    @property
    def heartbeat_seconds(self) -> int:
        return self.agent_heartbeat_minutes * 60

    @property
    def document_sources(self) -> Dict[str, str]:
        """Document sources scanned for unseen docs on every heartbeat."""
        return {
            "dataroma": self.dataroma_context_path,
            "vic": self.vic_context_path,
        }

    def validate_required(self) -> List[str]:
        """Return the env var names of missing required secrets."""
        missing: List[str] = []
        if not self.telegram_bot_token.strip():
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.telegram_chat_id.strip():
            missing.append("TELEGRAM_CHAT_ID")
        hosted_openai = self.openai_base_url.lower().startswith("https://api.openai.com")
        if self.llm_provider == "openai" and hosted_openai and not self.openai_api_key.strip():
            missing.append("OPENAI_API_KEY")
        return missing

    def safe_summary(self) -> str:
        """Render the non-secret configuration for the startup log."""
        lines = [
            f"LLM provider: {self.llm_provider}",
            f"OpenAI base URL: {self.openai_base_url}",
            f"OpenAI model: {self.openai_model}",
            f"OpenAI max tokens: {self.openai_max_tokens}",
            f"OpenAI temperature: {self.openai_temperature:g}",
            f"Heartbeat minutes: {self.agent_heartbeat_minutes}",
            f"Min minutes between cycle analysis: {self.agent_min_minutes_between_cycle_analysis}",
            f"Max context chars: {self.agent_max_context_chars}",
            f"Max conversation turns: {self.agent_max_conversation_turns}",
            f"Default pipeline: {self.agent_default_pipeline}",
            f"Intent routing: {'enabled' if self.agent_intent_routing else 'disabled'}",
            f"Out dir: {self.out_dir}",
            f"Important tickers path: {self.important_tickers_path}",
            f"Financial overview path: {self.financial_overview_path}",
            f"Dataroma context path: {self.dataroma_context_path}",
            f"VIC context path: {self.vic_context_path}",
            f"Foxland context path: {self.foxland_context_path}",
            f"Agent state path: {self.agent_state_path}",
            f"Job catalog: {self.job_catalog_path or '(built-in)'}",
            f"State backend: {'redis ' + self.redis_host if self.redis_host else 'file'}",
        ]
        return "\n".join(lines)


#: Singleton, import this in all consumer modules.
settings = Settings()
