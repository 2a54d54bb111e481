"""
Agent Toolchain - tool-using LLM agents with delegation.

Agents bound to a provider client run an orchestration loop over a shared
conversation: the model either answers or requests tools, which are dispatched
concurrently and fed back until it answers. Agents can hand work to other
agents, which appear to them as tools.
"""

__version__ = "0.1.0"

from .agent import Agent, AgentEvent
from .config import Settings
from .dispatcher import ToolDispatcher
from .messages import Conversation, Message, Role, ToolCallRequest, ToolResult
from .orchestrator import LoopOutcome, OrchestrationLoop, RunContext
from .service import MessageService
from .tool_registry import Tool, ToolRegistry, callable_to_tool_schema

__all__ = [
    "Agent",
    "AgentEvent",
    "Conversation",
    "LoopOutcome",
    "Message",
    "MessageService",
    "OrchestrationLoop",
    "Role",
    "RunContext",
    "Settings",
    "Tool",
    "ToolCallRequest",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolResult",
    "callable_to_tool_schema",
]
