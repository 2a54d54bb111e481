import pytest

from agent_toolchain.config import Settings
from agent_toolchain.errors import ConfigurationError

ENV_VARS = [
    "AGENT_TOOLCHAIN_MODEL",
    "AGENT_TOOLCHAIN_MAX_TURNS",
    "AGENT_TOOLCHAIN_MAX_DELEGATION_DEPTH",
    "AGENT_TOOLCHAIN_TOOL_TIMEOUT",
    "AGENT_TOOLCHAIN_PROVIDER_RETRIES",
    "AGENT_TOOLCHAIN_STREAM",
    "AGENT_TOOLCHAIN_SUBMIT_POLICY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env()

        assert settings.model == "gpt-4.1-mini"
        assert settings.max_turns == 8
        assert settings.max_delegation_depth == 2
        assert settings.tool_timeout == 30.0
        assert settings.provider_retries == 2
        assert settings.stream is False
        assert settings.submit_policy == "cancel"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AGENT_TOOLCHAIN_MODEL", "claude-sonnet-4")
        monkeypatch.setenv("AGENT_TOOLCHAIN_MAX_TURNS", "3")
        monkeypatch.setenv("AGENT_TOOLCHAIN_TOOL_TIMEOUT", "2.5")
        monkeypatch.setenv("AGENT_TOOLCHAIN_STREAM", "true")
        monkeypatch.setenv("AGENT_TOOLCHAIN_SUBMIT_POLICY", "queue")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")

        settings = Settings.from_env()

        assert settings.model == "claude-sonnet-4"
        assert settings.max_turns == 3
        assert settings.tool_timeout == 2.5
        assert settings.stream is True
        assert settings.submit_policy == "queue"
        assert settings.anthropic_api_key == "sk-ant"

    @pytest.mark.parametrize(
        "name, value",
        [
            ("AGENT_TOOLCHAIN_MAX_TURNS", "many"),
            ("AGENT_TOOLCHAIN_MAX_TURNS", "0"),
            ("AGENT_TOOLCHAIN_TOOL_TIMEOUT", "-1"),
            ("AGENT_TOOLCHAIN_SUBMIT_POLICY", "drop"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError):
            Settings.from_env()
