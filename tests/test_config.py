"""Tests for Settings clamping, derived paths and required-secret validation."""

from pathlib import Path

from utils.config import DEFAULT_OPENAI_BASE_URL, Settings


class TestDefaults:
    def test_values(self) -> None:
        s = Settings(_env_file=None)
        assert s.agent_heartbeat_minutes == 30
        assert s.agent_min_minutes_between_cycle_analysis == 720
        assert s.agent_max_conversation_turns == 12
        assert s.openai_base_url == DEFAULT_OPENAI_BASE_URL
        assert s.heartbeat_seconds == 1800

    def test_paths_derived_from_out_dir(self, tmp_path) -> None:
        s = Settings(_env_file=None, out_dir=str(tmp_path))
        assert s.important_tickers_path == str(tmp_path / "important_tickers.json")
        assert s.financial_overview_path == str(tmp_path / "financial_overview.jsonl")
        assert s.vic_context_path == str(tmp_path / "vic_context.txt")
        assert s.agent_state_path == str(tmp_path / "agent_state.json")

    def test_explicit_paths_win(self) -> None:
        s = Settings(_env_file=None, agent_state_path="/var/lib/agent/state.json")
        assert s.agent_state_path == "/var/lib/agent/state.json"
        assert s.vic_context_path == str(Path("out") / "vic_context.txt")

    def test_document_sources(self, settings) -> None:
        assert list(settings.document_sources) == ["dataroma", "vic"]


class TestClamping:
    def test_out_of_range_values(self) -> None:
        s = Settings(
            _env_file=None,
            agent_heartbeat_minutes=0,
            openai_max_tokens=10,
            openai_temperature=5.0,
            agent_max_conversation_turns=0,
            agent_min_minutes_between_cycle_analysis=-5,
            agent_max_context_chars=10,
        )
        assert s.agent_heartbeat_minutes == 1
        assert s.openai_max_tokens == 64
        assert s.openai_temperature == 2.0
        assert s.agent_max_conversation_turns == 1
        assert s.agent_min_minutes_between_cycle_analysis == 0
        assert s.agent_max_context_chars == 1000

    def test_base_url_trailing_slash(self) -> None:
        s = Settings(_env_file=None, openai_base_url="http://localhost:11434/v1/")
        assert s.openai_base_url == "http://localhost:11434/v1"

    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("AGENT_HEARTBEAT_MINUTES", "45")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "1234")
        s = Settings(_env_file=None)
        assert s.agent_heartbeat_minutes == 45
        assert s.telegram_chat_id == "1234"


class TestValidation:
    def test_missing_secrets(self) -> None:
        s = Settings(_env_file=None, telegram_bot_token="", telegram_chat_id="", openai_api_key="")
        assert s.validate_required() == ["TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "OPENAI_API_KEY"]

    def test_api_key_optional_for_custom_endpoint(self) -> None:
        s = Settings(
            _env_file=None,
            telegram_bot_token="t",
            telegram_chat_id="1",
            openai_api_key="",
            openai_base_url="http://localhost:8080/v1",
        )
        assert s.validate_required() == []

    def test_safe_summary_hides_secrets(self, make_settings) -> None:
        summary = make_settings(openai_api_key="sk-secret", telegram_bot_token="bot-secret").safe_summary()
        assert "sk-secret" not in summary
        assert "bot-secret" not in summary
        assert "Heartbeat minutes: 30" in summary
