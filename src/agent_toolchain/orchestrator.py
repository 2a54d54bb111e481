"""
Orchestration loop: drives one request-to-resolution cycle for an agent.

Query the agent's provider, append what it decided, dispatch requested tools
(concurrently, results appended in request order), and repeat until the model
answers or the run fails.
"""

import asyncio
import copy
import json
import logging
from typing import Callable, List, NamedTuple, Optional

from .agent import Agent, AgentEvent
from .dispatcher import ToolDispatcher
from .errors import Malformed, ProviderFailure, ToolchainError, TurnLimitExceeded
from .messages import Conversation, Message, Role, ToolCallRequest
from .providers.base import FinalMessage, ProviderResult, StreamAssembler

logger = logging.getLogger(__name__)


class RunContext:
    """Limits and collaborators shared by a run and its nested delegations."""

    def __init__(
        self,
        dispatcher: Optional[ToolDispatcher] = None,
        max_turns: int = 8,
        max_delegation_depth: int = 2,
        stream: bool = False,
        provider_retries: int = 2,
        retry_backoff: float = 0.5,
        event_handler: Optional[Callable[[AgentEvent], None]] = None,
        depth: int = 0,
        agent_name: Optional[str] = None,
        parent: Optional[str] = None,
    ):
        self.dispatcher = dispatcher or ToolDispatcher()
        self.max_turns = max_turns
        self.max_delegation_depth = max_delegation_depth
        self.stream = stream
        self.provider_retries = provider_retries
        self.retry_backoff = retry_backoff
        self.event_handler = event_handler
        self.depth = depth
        self.agent_name = agent_name
        self.parent = parent

    @classmethod
    def from_settings(cls, settings, dispatcher=None, event_handler=None) -> "RunContext":
        return cls(
            dispatcher=dispatcher or ToolDispatcher(timeout=settings.tool_timeout),
            max_turns=settings.max_turns,
            max_delegation_depth=settings.max_delegation_depth,
            stream=settings.stream,
            provider_retries=settings.provider_retries,
            event_handler=event_handler,
        )

    def for_agent(self, agent_name: str) -> "RunContext":
        context = copy.copy(self)
        context.agent_name = agent_name
        return context

    def child(self) -> "RunContext":
        """Context for a delegate one hop further down."""
        context = copy.copy(self)
        context.depth = self.depth + 1
        context.parent = self.agent_name
        context.agent_name = None
        return context

    def emit(self, event: AgentEvent) -> None:
        if self.event_handler is None:
            return
        try:
            self.event_handler(event)
        except Exception as e:
            logger.error(f"Error in agent event handler: {e}")


class LoopOutcome(NamedTuple):
    agent: str
    message: Optional[Message] = None
    error: Optional[ToolchainError] = None
    turns: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> Optional[str]:
        return self.message.text if self.message else None


class OrchestrationLoop:
    def __init__(self, agent: Agent, context: Optional[RunContext] = None):
        self.agent = agent
        self.context = (context or RunContext()).for_agent(agent.name)
        self.dispatcher = self.context.dispatcher
        self.logger = agent.logger

    def log_item(self, item_type: str, extra: dict):
        structured = {"log_type": item_type, "depth": self.context.depth, **extra}
        self.logger.info(
            f"{item_type.replace('_', ' ').title()} received", extra={"structured": structured}
        )

    async def run(self, conversation: Conversation, user_text: Optional[str] = None) -> LoopOutcome:
        """Run until the agent produces a final reply or the run fails.

        Provider failures and the turn limit end the run with a failed outcome.
        Everything appended before the failure stays in the conversation.
        """
        agent = self.agent
        agent.freeze()

        if user_text is not None:
            conversation.append(Message.user(user_text))
            self.log_item("user_input", {"content": user_text})
        self.context.emit(
            AgentEvent("started", agent.name, self._task_text(conversation), self.context.parent)
        )

        turn = 0
        try:
            while True:
                result = await self._query(conversation)

                if isinstance(result, FinalMessage):
                    message = conversation.append(Message.assistant(result.text, agent=agent.name))
                    self.log_item("output_text", {"content": result.text})
                    self.context.emit(AgentEvent("completed", agent.name, result.text))
                    return LoopOutcome(agent.name, message, None, turn)

                calls = self._append_calls(conversation, result)
                await self._dispatch(conversation, calls)
                turn += 1
                if turn > self.context.max_turns:
                    raise TurnLimitExceeded(self.context.max_turns)
        except (ProviderFailure, TurnLimitExceeded) as e:
            self.logger.error(f"Run of agent '{agent.name}' failed: {e}")
            self.context.emit(AgentEvent("error", agent.name, str(e)))
            return LoopOutcome(agent.name, None, e, turn)

    def _task_text(self, conversation: Conversation) -> str:
        for message in reversed(conversation.snapshot()):
            if message.role is Role.USER:
                return message.text or ""
        return "Unknown task"

    async def _query(self, conversation: Conversation) -> ProviderResult:
        """Ask the provider what to do next, retrying transient failures with backoff."""
        agent = self.agent
        schemas = agent.effective_tools().get_schemas()
        attempt = 0
        while True:
            snapshot = conversation.snapshot()
            try:
                if self.context.stream:
                    return await self._query_stream(snapshot, schemas)
                return await agent.provider.send(
                    snapshot, schemas, agent.model, agent.system_prompt()
                )
            except ProviderFailure as e:
                if not e.retryable or attempt >= self.context.provider_retries:
                    raise
                delay = self.context.retry_backoff * (2**attempt)
                attempt += 1
                self.logger.warning(
                    f"Provider failure ({type(e).__name__}: {e}), retry {attempt} in {delay:g}s"
                )
                await asyncio.sleep(delay)

    async def _query_stream(self, snapshot, schemas) -> ProviderResult:
        agent = self.agent
        assembler = StreamAssembler(agent.provider.name)
        async for fragment in agent.provider.stream(
            snapshot, schemas, agent.model, agent.system_prompt()
        ):
            assembler.feed(fragment)
        if not assembler.finished:
            raise Malformed("Stream ended without a terminal marker", agent.provider.name)
        return assembler.result()

    def _append_calls(self, conversation: Conversation, result) -> List[ToolCallRequest]:
        agent = self.agent
        ids = [call.id for call in result.calls]
        if len(set(ids)) != len(ids) or any(conversation.knows_call(i) for i in ids):
            raise Malformed("Provider reused a tool call id", agent.provider.name)

        for index, call in enumerate(result.calls):
            text = result.text if index == 0 else None
            conversation.append(Message.tool_call(call, agent=agent.name, text=text))
            arguments = json.dumps(call.arguments, ensure_ascii=False, default=str)
            self.log_item(
                "tool_call",
                {"tool_name": call.name, "arguments": arguments, "call_id": call.id},
            )
            self.context.emit(AgentEvent("tool_called", agent.name, arguments, target=call.name))
        return list(result.calls)

    async def _dispatch(self, conversation: Conversation, calls: List[ToolCallRequest]) -> None:
        """Run calls concurrently; append their results in request order."""
        tasks = []
        for call in calls:
            task = asyncio.create_task(self.dispatcher.invoke(call, self.agent, self.context))
            conversation.bind_dispatch(call.id, task)
            tasks.append((call, task))

        try:
            for call, task in tasks:
                await asyncio.wait({task})
                if task.cancelled() or conversation.is_invalidated(call.id):
                    self.logger.info(f"Discarding result of deleted tool call {call.id}")
                    continue
                result = task.result()
                conversation.append(Message.tool_result(result, agent=self.agent.name))
                self.log_item("tool_result", {"tool_name": call.name, "result": result.output})
                self.context.emit(
                    AgentEvent("tool_completed", self.agent.name, result.output, target=call.name)
                )
        finally:
            # a cancelled or failed run leaves no dispatch behind
            leftover = [task for _, task in tasks if not task.done()]
            for task in leftover:
                task.cancel()
            if leftover:
                await asyncio.wait(leftover)
