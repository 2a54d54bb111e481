import logging
from types import MappingProxyType
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from .errors import ConfigurationError, DelegationDepthExceeded, ToolError
from .providers.base import ProviderClient
from .tool_registry import Tool, ToolRegistry

logger = logging.getLogger(__name__)


class AgentLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that automatically injects agent_id into structured logs."""

    def __init__(self, logger, agent_id):
        self.agent_id = agent_id
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        # Inject agent_id into structured logs
        if "extra" in kwargs and "structured" in kwargs["extra"]:
            kwargs["extra"]["structured"]["agent_id"] = self.agent_id
        return msg, kwargs


class AgentEvent(NamedTuple):
    """Progress notification emitted while an agent works."""

    kind: str  # started, agent_transfer, tool_called, tool_completed, completed, error
    agent: str
    detail: str = ""
    parent: Optional[str] = None
    target: Optional[str] = None

    def describe(self) -> str:
        if self.kind == "started":
            parent = f" (parent: {self.parent})" if self.parent else ""
            return f"Agent '{self.agent}'{parent} started: {self.detail}"
        if self.kind == "agent_transfer":
            return f"Agent '{self.agent}' delegated to '{self.target}': {self.detail}"
        if self.kind == "tool_called":
            return f"Agent '{self.agent}' using tool: {self.target}, arguments: {self.detail}"
        if self.kind == "tool_completed":
            return f"Agent '{self.agent}' completed tool: {self.target}"
        if self.kind == "completed":
            return f"Agent '{self.agent}' completed with result: {self.detail}"
        if self.kind == "error":
            return f"Agent '{self.agent}' error: {self.detail}"
        return f"Agent '{self.agent}' {self.kind}: {self.detail}"


DELEGATE_PARAMETERS = {
    "type": "object",
    "properties": {
        "task": {
            "type": "string",
            "description": "The complete request for the agent, including any context it needs",
        },
        "reason": {
            "type": "string",
            "description": "Why the request is being handed to this agent",
        },
    },
    "required": ["task"],
}


class DelegateTool(Tool):
    """Exposes an agent to a parent agent as an invocable tool.

    Invoking it runs a nested orchestration loop for the delegate agent on a fresh
    conversation holding only the delegation request, and returns the delegate's
    final reply.
    """

    def __init__(self, agent: "Agent"):
        super().__init__(agent.name, agent.description, DELEGATE_PARAMETERS)
        self.agent = agent

    async def invoke(self, arguments: Dict[str, Any], context=None) -> str:
        from .messages import Conversation
        from .orchestrator import OrchestrationLoop, RunContext

        context = context or RunContext()
        if context.depth + 1 > context.max_delegation_depth:
            raise DelegationDepthExceeded(self.agent.name, context.max_delegation_depth)

        task = arguments["task"]
        reason = arguments.get("reason")
        parent = context.agent_name or "user"
        context.emit(
            AgentEvent("agent_transfer", parent, reason or task, target=self.agent.name)
        )

        request = f"Request from {parent}: {task}"
        if reason:
            request += f"\n\nReason for the transfer: {reason}"

        loop = OrchestrationLoop(self.agent, context.child())
        outcome = await loop.run(Conversation(), request)
        if not outcome.ok:
            raise ToolError(f"Delegate agent '{self.agent.name}' failed: {outcome.error}")
        return outcome.text


class Agent:
    """A named persona bound to one provider client and model.

    Tools, plugins and delegates are fixed at configuration time. Delegates may
    still be attached with ``add_delegate`` (needed for mutually delegating agents)
    until the agent is first used by an orchestration loop.
    """

    def __init__(
        self,
        name: str,
        description: str,
        instructions: str,
        provider: ProviderClient,
        model: str,
        tools: Sequence = (),
        plugins: Sequence = (),
        delegate_agents: Sequence["Agent"] = (),
    ):
        self.name = name
        self.description = description
        self.instructions = instructions
        self.provider = provider
        self.model = model
        self.plugins = tuple(plugins)
        self.logger = AgentLoggerAdapter(logger, name)
        self._frozen = False

        # Initialize tool registry and register plugin tools
        registry = ToolRegistry()
        for tool in tools:
            if isinstance(tool, Tool):
                registry.register(tool)
            else:
                registry.register_callable(tool)
        for plugin in self.plugins:
            if hasattr(plugin, "hook_provide_tools"):
                for method in plugin.hook_provide_tools():
                    registry.register_callable(method)
        self._tools = registry.tools

        self._delegates: List[Agent] = []
        for delegate in delegate_agents:
            self.add_delegate(delegate)

    @property
    def tools(self):
        """The agent's own tools, by name."""
        return MappingProxyType(self._tools)

    @property
    def delegate_agents(self):
        return tuple(self._delegates)

    def add_delegate(self, agent: "Agent") -> None:
        if self._frozen:
            raise ConfigurationError(
                f"Agent '{self.name}' is in use; its delegates can no longer change"
            )
        if agent.name in self._tools or any(d.name == agent.name for d in self._delegates):
            raise ConfigurationError(
                f"Delegate '{agent.name}' collides with an existing tool of agent '{self.name}'"
            )
        self._delegates.append(agent)

    def freeze(self) -> None:
        self._frozen = True

    def as_tool_descriptor(self) -> DelegateTool:
        return DelegateTool(self)

    def effective_tools(self) -> ToolRegistry:
        """Own tools followed by one delegate pseudo-tool per delegate agent."""
        registry = ToolRegistry(self._tools.values())
        for delegate in self._delegates:
            registry.register(delegate.as_tool_descriptor())
        return registry

    def system_prompt(self) -> str:
        """Creates the system prompt from the agent configuration."""
        prompt = f"You are an AI assistant named {self.name}."
        prompt += f"\nRole: {self.description}"
        prompt += f"\n\nInstructions:\n{self.instructions}"

        if self._tools:
            prompt += "\n\nAvailable Tools:"
            for tool in self._tools.values():
                prompt += f"\n- {tool.name}: {tool.description}"

        if self._delegates:
            prompt += "\n\nYou can transfer to these agents:"
            for agent in self._delegates:
                prompt += f"\n- {agent.name}: {agent.description}"
            prompt += (
                "\n\nYou should relay any responses from your delegate agents "
                "and always return a response no matter what."
            )

        additions = []
        for plugin in self.plugins:
            if hasattr(plugin, "hook_provide_system_prompt"):
                try:
                    addition = plugin.hook_provide_system_prompt()
                    if addition and addition.strip():
                        additions.append(addition.strip())
                except Exception as e:
                    self.logger.error(
                        f"Error collecting system prompt from {plugin.__class__.__name__}: {e}"
                    )
        if additions:
            prompt += "\n\n" + "\n\n".join(additions)
        return prompt

    def __repr__(self) -> str:
        return f"Agent(name={self.name!r}, model={self.model!r})"
