"""
Provider client contract.

A provider client turns a conversation plus the active agent's tool schemas
into either a final assistant message or a request to invoke tools. Clients
translate backend errors into ProviderFailure subclasses.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from ..errors import Malformed
from ..messages import Message, Role, ToolCallRequest

logger = logging.getLogger(__name__)


class FinalMessage(NamedTuple):
    text: str


class ToolInvocationRequest(NamedTuple):
    calls: Tuple[ToolCallRequest, ...]
    text: Optional[str] = None


ProviderResult = Union[FinalMessage, ToolInvocationRequest]


class TextDelta(NamedTuple):
    text: str


class ToolCallDelta(NamedTuple):
    """Fragment of a streamed tool call. Fragments sharing ``index`` belong together."""

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_fragment: str = ""


class StreamEnd(NamedTuple):
    pass


StreamFragment = Union[TextDelta, ToolCallDelta, StreamEnd]


def answered_call_ids(conversation: Sequence[Message]) -> set:
    """Ids of tool calls that have a result in ``conversation``."""
    return {m.tool_call_id for m in conversation if m.role is Role.TOOL_RESULT}


def parse_arguments(raw: Optional[str], provider: Optional[str] = None) -> Dict:
    """Decode a JSON arguments payload. Empty payloads mean no arguments."""
    if raw is None or not raw.strip():
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise Malformed(f"Tool arguments are not valid JSON: {e}", provider=provider)
    if not isinstance(arguments, dict):
        raise Malformed("Tool arguments must be a JSON object", provider=provider)
    return arguments


class StreamAssembler:
    """Buffers stream fragments until complete tool calls can be assembled.

    Calls are only handed out after the stream's terminal marker; a partial or
    malformed call never reaches the dispatcher.
    """

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider
        self._text: List[str] = []
        self._calls: Dict[int, Dict] = {}
        self.finished = False

    def feed(self, fragment: StreamFragment) -> None:
        if self.finished:
            raise Malformed("Fragment received after end of stream", provider=self.provider)
        if isinstance(fragment, TextDelta):
            self._text.append(fragment.text)
        elif isinstance(fragment, ToolCallDelta):
            call = self._calls.setdefault(
                fragment.index, {"id": None, "name": None, "arguments": []}
            )
            if fragment.id:
                call["id"] = fragment.id
            if fragment.name:
                call["name"] = fragment.name
            if fragment.arguments_fragment:
                call["arguments"].append(fragment.arguments_fragment)
        elif isinstance(fragment, StreamEnd):
            self.finished = True

    @property
    def text(self) -> str:
        return "".join(self._text)

    def complete_calls(self) -> List[ToolCallRequest]:
        if not self.finished:
            raise Malformed("Stream ended without a terminal marker", provider=self.provider)
        calls = []
        for index in sorted(self._calls):
            call = self._calls[index]
            if not call["id"] or not call["name"]:
                raise Malformed(
                    f"Incomplete tool call at index {index}", provider=self.provider
                )
            arguments = parse_arguments("".join(call["arguments"]), self.provider)
            calls.append(ToolCallRequest(call["id"], call["name"], arguments))
        return calls

    def result(self) -> ProviderResult:
        calls = self.complete_calls()
        if calls:
            return ToolInvocationRequest(tuple(calls), self.text or None)
        return FinalMessage(self.text)


class ProviderClient(ABC):
    """Abstraction over one LLM backend."""

    name = "provider"
    model_prefixes: Tuple[str, ...] = ()

    def can_handle(self, model: str) -> bool:
        return any(model.startswith(prefix) for prefix in self.model_prefixes)

    @abstractmethod
    async def send(
        self,
        conversation: Sequence[Message],
        tools: Sequence[Dict],
        model: str,
        system_prompt: Optional[str] = None,
    ) -> ProviderResult:
        """Send the conversation and return the backend's decision."""

    async def stream(
        self,
        conversation: Sequence[Message],
        tools: Sequence[Dict],
        model: str,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[StreamFragment]:
        """Incremental variant of ``send``. Ends with a StreamEnd marker."""
        result = await self.send(conversation, tools, model, system_prompt)
        if isinstance(result, FinalMessage):
            if result.text:
                yield TextDelta(result.text)
        else:
            if result.text:
                yield TextDelta(result.text)
            for index, call in enumerate(result.calls):
                yield ToolCallDelta(index, call.id, call.name, json.dumps(call.arguments))
        yield StreamEnd()

    async def close(self) -> None:
        pass
