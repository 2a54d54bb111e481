"""
Message service: the façade a user interface talks to.

Owns the conversation for one chat session, runs orchestration turns, and
publishes every append/delete to subscribers. At most one turn is in flight:
with the ``cancel`` policy a new submission cancels the running turn, with
``queue`` it waits for it.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional

from .agent import Agent, AgentEvent
from .config import SUBMIT_POLICIES, Settings
from .dispatcher import ToolDispatcher
from .errors import ConfigurationError, TurnCancelled
from .messages import Conversation, Message
from .orchestrator import LoopOutcome, OrchestrationLoop, RunContext

logger = logging.getLogger(__name__)


def _drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class MessageService:
    def __init__(
        self,
        agent: Agent,
        settings: Optional[Settings] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        policy: Optional[str] = None,
        record_events: bool = True,
    ):
        self.agent = agent
        self.settings = settings or Settings()
        self.policy = policy or self.settings.submit_policy
        if self.policy not in SUBMIT_POLICIES:
            raise ConfigurationError(f"Unknown submit policy {self.policy!r}")
        self.dispatcher = dispatcher or ToolDispatcher(timeout=self.settings.tool_timeout)
        self.record_events = record_events

        self.conversation = Conversation()
        self.conversation.subscribe(self._broadcast)
        self.last_outcome: Optional[LoopOutcome] = None

        self._current: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._submissions = 0
        self._turns = 0
        self._active_turn: Optional[int] = None
        self._subscribers: List[asyncio.Queue] = []
        self._turn_listeners: List[asyncio.Queue] = []  # receive (turn_id, message) per append

    @property
    def messages(self):
        return self.conversation.snapshot()

    @property
    def is_running(self) -> bool:
        return self._current is not None and not self._current.done()

    def set_agent(self, agent: Agent) -> None:
        """Use ``agent`` from the next turn on. The history is kept."""
        self.agent = agent
        logger.info(f"Switched to agent '{agent.name}' with model {agent.model}")

    async def submit(self, user_text: str) -> LoopOutcome:
        """Run one turn for ``user_text`` and return its outcome.

        Under the ``cancel`` policy a turn replaced by a newer submission, or a
        submission overtaken by a newer one before its turn started, reports a
        TurnCancelled error.
        """
        return await self._submit(user_text)

    async def _submit(self, user_text: str, on_turn=None) -> LoopOutcome:
        if self.policy == "queue":
            async with self._lock:
                return await self._start_and_wait(user_text, on_turn)

        self._submissions += 1
        submission = self._submissions
        previous = self._current
        if previous is not None and not previous.done():
            logger.info("New submission while a turn is running, cancelling it")
            previous.cancel()
            await asyncio.wait({previous})
        if submission != self._submissions:
            logger.info(f"Submission {submission} replaced before its turn started")
            return self._cancelled_outcome()
        return await self._start_and_wait(user_text, on_turn)

    def _cancelled_outcome(self) -> LoopOutcome:
        return LoopOutcome(self.agent.name, None, TurnCancelled("Turn was cancelled"))

    async def _start_and_wait(self, user_text: str, on_turn=None) -> LoopOutcome:
        self._turns += 1
        turn_id = self._turns
        if on_turn is not None:
            on_turn(turn_id)
        task = asyncio.create_task(self._run_turn(user_text, turn_id))
        self._current = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.cancelled():
            outcome = self._cancelled_outcome()
        else:
            outcome = task.result()
        self.last_outcome = outcome
        return outcome

    async def _run_turn(self, user_text: str, turn_id: int) -> LoopOutcome:
        self._active_turn = turn_id
        try:
            context = RunContext.from_settings(
                self.settings, dispatcher=self.dispatcher, event_handler=self._record_event
            )
            outcome = await OrchestrationLoop(self.agent, context).run(self.conversation, user_text)
        finally:
            if self._active_turn == turn_id:
                self._active_turn = None
        if not outcome.ok:
            logger.error(f"Turn failed: {type(outcome.error).__name__}: {outcome.error}")
        return outcome

    async def submit_stream(self, user_text: str) -> AsyncIterator[Message]:
        """Submit ``user_text`` and yield the messages its own turn appends."""
        queue = asyncio.Queue()
        mine = set()
        self._turn_listeners.append(queue)
        turn = asyncio.create_task(self._submit(user_text, on_turn=mine.add))
        try:
            while True:
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait({getter, turn}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    turn_id, message = getter.result()
                    if turn_id in mine:
                        yield message
                    continue
                getter.cancel()
                for turn_id, message in _drain(queue):
                    if turn_id in mine:
                        yield message
                break
        finally:
            self._turn_listeners.remove(queue)
            if not turn.done():
                turn.cancel()

    async def cancel(self) -> None:
        """Cancel the in-flight turn, if any."""
        if self.is_running:
            self._current.cancel()
            await asyncio.wait({self._current})

    def delete_message(self, message_id: str) -> List[Message]:
        """Delete a message; a pending tool call loses its dispatch and its result."""
        removed = self.conversation.delete(message_id)
        if removed:
            logger.info(f"Deleted {len(removed)} message(s) starting at {message_id}")
        return removed

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving ``(action, message)`` for every append and delete."""
        queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _broadcast(self, action: str, message: Message) -> None:
        for queue in self._subscribers:
            queue.put_nowait((action, message))
        if action == "append" and self._active_turn is not None:
            for queue in self._turn_listeners:
                queue.put_nowait((self._active_turn, message))

    def _record_event(self, event: AgentEvent) -> None:
        if not self.record_events:
            return
        # the session agent's own steps are already visible as messages
        if event.agent == self.agent.name and event.kind not in ("agent_transfer", "error"):
            return
        self.conversation.append(Message.agent_event(event.describe(), agent=event.agent))
