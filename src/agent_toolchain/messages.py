"""
Conversation history: messages, tool-call requests and the append-only store.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple

from .errors import ConversationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    AGENT_EVENT = "agent_event"


class ToolCallRequest(NamedTuple):
    """A single tool invocation requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any]


class ToolResult(NamedTuple):
    """Outcome of dispatching one ToolCallRequest."""

    call_id: str
    name: str
    output: str
    is_error: bool = False
    error_type: Optional[str] = None


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Message(NamedTuple):
    """Immutable conversation entry. Build instances with the role constructors."""

    role: Role
    text: Optional[str]
    tool_calls: Tuple[ToolCallRequest, ...]
    tool_call_id: Optional[str]
    timestamp: datetime
    id: str
    agent: Optional[str] = None
    is_error: bool = False

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(Role.USER, text, (), None, _now(), _new_id())

    @classmethod
    def assistant(cls, text: str, agent: Optional[str] = None) -> "Message":
        return cls(Role.ASSISTANT, text, (), None, _now(), _new_id(), agent)

    @classmethod
    def tool_call(
        cls,
        request: ToolCallRequest,
        agent: Optional[str] = None,
        text: Optional[str] = None,
    ) -> "Message":
        return cls(Role.TOOL_CALL, text, (request,), None, _now(), _new_id(), agent)

    @classmethod
    def tool_result(cls, result: ToolResult, agent: Optional[str] = None) -> "Message":
        return cls(
            Role.TOOL_RESULT,
            result.output,
            (),
            result.call_id,
            _now(),
            _new_id(),
            agent,
            result.is_error,
        )

    @classmethod
    def agent_event(cls, text: str, agent: Optional[str] = None) -> "Message":
        return cls(Role.AGENT_EVENT, text, (), None, _now(), _new_id(), agent)

    @property
    def call(self) -> Optional[ToolCallRequest]:
        """The request carried by a tool-call message."""
        return self.tool_calls[0] if self.tool_calls else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "tool_calls": [call._asdict() for call in self.tool_calls],
            "tool_call_id": self.tool_call_id,
            "timestamp": self.timestamp.isoformat(),
            "agent": self.agent,
            "is_error": self.is_error,
        }


ConversationListener = Callable[[str, Message], None]


class Conversation:
    """Ordered, append-only message history for one chat session.

    Keeps track of which tool calls are still waiting for a result. A tool-call
    is pending from the moment it is appended until exactly one matching
    tool-result is appended. Deleting a pending tool-call cancels the task
    registered for it with ``bind_dispatch`` and invalidates the call, so a
    late result is discarded instead of appended.
    """

    def __init__(self):
        self._messages: List[Message] = []
        self._call_messages: Dict[str, str] = {}  # call_id -> tool-call message id
        self._result_messages: Dict[str, str] = {}  # call_id -> tool-result message id
        self._dispatches = {}  # call_id -> asyncio.Task
        self._invalidated = set()
        self._listeners: List[ConversationListener] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def get(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def append(self, message: Message) -> Message:
        if message.role is Role.TOOL_CALL:
            if len(message.tool_calls) != 1:
                raise ConversationError("A tool-call message must carry exactly one call")
            call_id = message.call.id
            if self.knows_call(call_id):
                raise ConversationError(f"Duplicate tool call id '{call_id}'")
            self._call_messages[call_id] = message.id
        elif message.role is Role.TOOL_RESULT:
            call_id = message.tool_call_id
            if call_id not in self._call_messages:
                raise ConversationError(f"No tool call '{call_id}' to attach a result to")
            if call_id in self._result_messages:
                raise ConversationError(f"Tool call '{call_id}' already has a result")
            self._result_messages[call_id] = message.id

        self._messages.append(message)
        self._notify("append", message)
        return message

    def pending_calls(self) -> List[str]:
        return [
            call_id
            for call_id in self._call_messages
            if call_id not in self._result_messages
        ]

    def is_pending(self, call_id: str) -> bool:
        return call_id in self._call_messages and call_id not in self._result_messages

    def knows_call(self, call_id: str) -> bool:
        """True if ``call_id`` is in the history or was deleted while pending."""
        return call_id in self._call_messages or call_id in self._invalidated

    def is_invalidated(self, call_id: str) -> bool:
        return call_id in self._invalidated

    def bind_dispatch(self, call_id: str, task) -> None:
        """Attach the task dispatching ``call_id`` so a delete can cancel it."""
        if call_id in self._invalidated:
            task.cancel()
            return
        self._dispatches[call_id] = task
        task.add_done_callback(lambda _: self._dispatches.pop(call_id, None))

    def delete(self, message_id: str) -> List[Message]:
        """Delete a message and whatever half of a tool pairing it leaves orphaned."""
        message = self.get(message_id)
        if message is None:
            return []

        doomed = {message.id}
        call_id = None
        if message.role is Role.TOOL_CALL:
            call_id = message.call.id
            result_id = self._result_messages.get(call_id)
            if result_id:
                doomed.add(result_id)
            else:
                self._invalidate(call_id)
        elif message.role is Role.TOOL_RESULT:
            call_id = message.tool_call_id
            doomed.add(self._call_messages[call_id])

        if call_id is not None:
            self._call_messages.pop(call_id, None)
            self._result_messages.pop(call_id, None)

        removed = [m for m in self._messages if m.id in doomed]
        self._messages = [m for m in self._messages if m.id not in doomed]
        for m in removed:
            self._notify("delete", m)
        return removed

    def _invalidate(self, call_id: str) -> None:
        self._invalidated.add(call_id)
        task = self._dispatches.pop(call_id, None)
        if task is not None and not task.done():
            logger.info(f"Cancelling dispatch of deleted tool call {call_id}")
            task.cancel()

    def subscribe(self, listener: ConversationListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ConversationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, action: str, message: Message) -> None:
        for listener in list(self._listeners):
            try:
                listener(action, message)
            except Exception as e:
                logger.error(f"Error in conversation listener {listener!r}: {e}")
