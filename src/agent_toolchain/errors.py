"""
Failure taxonomy for the orchestration core.

Tool-level failures (ToolError subclasses) are turned into error tool-results
and fed back to the model. Provider failures and the turn limit end the
current orchestration run.
"""

from typing import Optional


class ToolchainError(Exception):
    """Base class for every error raised by agent_toolchain."""


class ConfigurationError(ToolchainError):
    """Invalid agent, tool or settings configuration."""


class ConversationError(ToolchainError):
    """A write would break the tool-call/tool-result pairing of a conversation."""


class ProviderFailure(ToolchainError):
    """Provider-agnostic failure reported by a provider client."""

    retryable = True

    def __init__(
        self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimited(ProviderFailure):
    pass


class AuthFailure(ProviderFailure):
    retryable = False


class Malformed(ProviderFailure):
    """The backend rejected the request or returned something unparseable."""


class Unavailable(ProviderFailure):
    pass


class ToolError(ToolchainError):
    """Failure of a single tool call. Never aborts the loop."""


class UnknownTool(ToolError):
    def __init__(self, name: str, available=None):
        self.name = name
        self.available = list(available or [])
        message = f"Tool '{name}' is not available"
        if self.available:
            message += f". Available tools: {', '.join(self.available)}"
        super().__init__(message)


class ToolValidationError(ToolError):
    def __init__(self, name: str, problems):
        self.name = name
        self.problems = list(problems)
        super().__init__(f"Invalid arguments for '{name}': {'; '.join(self.problems)}")


class ToolTimeout(ToolError):
    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"Tool '{name}' timed out after {timeout:g} seconds")


class DelegationDepthExceeded(ToolError):
    def __init__(self, agent: str, max_depth: int):
        self.agent = agent
        self.max_depth = max_depth
        super().__init__(
            f"Cannot delegate to '{agent}': maximum delegation depth of {max_depth} reached"
        )


class TurnCancelled(ToolchainError):
    """A submitted turn was cancelled before it finished."""


class TurnLimitExceeded(ToolchainError):
    def __init__(self, max_turns: int):
        self.max_turns = max_turns
        super().__init__(f"Turn limit of {max_turns} exceeded")
