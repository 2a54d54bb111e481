import os
from typing import Optional

from .errors import ConfigurationError

SUBMIT_POLICIES = ("cancel", "queue")


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime settings. Call ``load_dotenv()`` before ``from_env`` to pick up a .env file."""

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        max_turns: int = 8,
        max_delegation_depth: int = 2,
        tool_timeout: float = 30.0,
        provider_retries: int = 2,
        stream: bool = False,
        submit_policy: str = "cancel",
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        google_search_api_key: Optional[str] = None,
        google_search_engine_id: Optional[str] = None,
    ):
        if submit_policy not in SUBMIT_POLICIES:
            raise ConfigurationError(
                f"submit policy must be one of {SUBMIT_POLICIES}, got {submit_policy!r}"
            )
        self.model = model
        self.max_turns = max_turns
        self.max_delegation_depth = max_delegation_depth
        self.tool_timeout = tool_timeout
        self.provider_retries = provider_retries
        self.stream = stream
        self.submit_policy = submit_policy
        self.openai_api_key = openai_api_key
        self.anthropic_api_key = anthropic_api_key
        self.google_search_api_key = google_search_api_key
        self.google_search_engine_id = google_search_engine_id

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            model=os.getenv("AGENT_TOOLCHAIN_MODEL") or "gpt-4.1-mini",
            max_turns=_env_int("AGENT_TOOLCHAIN_MAX_TURNS", 8, minimum=1),
            max_delegation_depth=_env_int("AGENT_TOOLCHAIN_MAX_DELEGATION_DEPTH", 2),
            tool_timeout=_env_float("AGENT_TOOLCHAIN_TOOL_TIMEOUT", 30.0),
            provider_retries=_env_int("AGENT_TOOLCHAIN_PROVIDER_RETRIES", 2),
            stream=_env_bool("AGENT_TOOLCHAIN_STREAM", False),
            submit_policy=os.getenv("AGENT_TOOLCHAIN_SUBMIT_POLICY") or "cancel",
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            google_search_api_key=os.getenv("GOOGLE_SEARCH_API_KEY"),
            google_search_engine_id=os.getenv("GOOGLE_SEARCH_ENGINE_ID"),
        )
