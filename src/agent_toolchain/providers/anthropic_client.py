import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import anthropic
from anthropic import AsyncAnthropic

from ..errors import AuthFailure, Malformed, ProviderFailure, RateLimited, Unavailable
from ..messages import Message, Role, ToolCallRequest
from .base import (
    FinalMessage,
    ProviderClient,
    StreamEnd,
    TextDelta,
    ToolCallDelta,
    ToolInvocationRequest,
    answered_call_ids,
)

logger = logging.getLogger(__name__)


def to_anthropic_messages(conversation: Sequence[Message]) -> List[Dict[str, Any]]:
    """Convert history to Messages API turns, merging blocks of the same role."""
    messages: List[Dict[str, Any]] = []

    def add(role: str, block: Dict[str, Any]) -> None:
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].append(block)
        else:
            messages.append({"role": role, "content": [block]})

    answered = answered_call_ids(conversation)
    for message in conversation:
        if message.role is Role.USER:
            add("user", {"type": "text", "text": message.text or ""})
        elif message.role is Role.ASSISTANT:
            if message.text:
                add("assistant", {"type": "text", "text": message.text})
        elif message.role is Role.TOOL_CALL:
            call = message.call
            if call.id not in answered:
                continue
            if message.text:
                add("assistant", {"type": "text", "text": message.text})
            add(
                "assistant",
                {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments},
            )
        elif message.role is Role.TOOL_RESULT:
            add(
                "user",
                {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.text or "",
                    "is_error": message.is_error,
                },
            )
    return messages


def to_anthropic_tools(tools: Sequence[Dict]) -> List[Dict[str, Any]]:
    return [
        {
            "name": tool["name"],
            "description": tool.get("description", ""),
            "input_schema": tool.get("parameters", {"type": "object", "properties": {}}),
        }
        for tool in tools
    ]


def translate_anthropic_error(error: Exception, provider: str = "anthropic") -> ProviderFailure:
    status = getattr(error, "status_code", None)
    message = str(error)
    if isinstance(error, anthropic.RateLimitError):
        return RateLimited(message, provider, status)
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return AuthFailure(message, provider, status)
    if isinstance(
        error,
        (
            anthropic.BadRequestError,
            anthropic.NotFoundError,
            anthropic.UnprocessableEntityError,
            anthropic.APIResponseValidationError,
        ),
    ):
        return Malformed(message, provider, status)
    return Unavailable(message, provider, status)


class AnthropicProvider(ProviderClient):
    """Messages API client for Claude models."""

    name = "anthropic"
    model_prefixes = ("claude-",)

    def __init__(
        self,
        client: Optional[AsyncAnthropic] = None,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
    ):
        self._client = client
        self._api_key = api_key
        self.max_tokens = max_tokens

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self._api_key or os.getenv("ANTHROPIC_API_KEY"))
        return self._client

    def _request(self, conversation, tools, model, system_prompt) -> Dict[str, Any]:
        request = {
            "model": model,
            "max_tokens": self.max_tokens,
            "messages": to_anthropic_messages(conversation),
        }
        if system_prompt:
            request["system"] = system_prompt
        if tools:
            request["tools"] = to_anthropic_tools(tools)
        return request

    async def send(self, conversation, tools, model, system_prompt=None):
        request = self._request(conversation, tools, model, system_prompt)
        try:
            response = await self.client.messages.create(**request)
        except anthropic.AnthropicError as e:
            logger.error(f"Anthropic request failed: {e}")
            raise translate_anthropic_error(e, self.name) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        calls = []
        for block in response.content:
            if block.type != "tool_use":
                continue
            if not isinstance(block.input, dict):
                raise Malformed(f"Tool input for '{block.name}' is not an object", self.name)
            calls.append(ToolCallRequest(block.id, block.name, block.input))

        if calls:
            return ToolInvocationRequest(tuple(calls), text or None)
        return FinalMessage(text)

    async def stream(self, conversation, tools, model, system_prompt=None):
        request = self._request(conversation, tools, model, system_prompt)
        try:
            stream = await self.client.messages.create(**request, stream=True)
            finished = False
            async for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        yield ToolCallDelta(event.index, block.id, block.name)
                    elif block.type == "text" and block.text:
                        yield TextDelta(block.text)
                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield TextDelta(delta.text)
                    elif delta.type == "input_json_delta":
                        yield ToolCallDelta(event.index, arguments_fragment=delta.partial_json)
                elif event.type == "message_stop":
                    finished = True
        except anthropic.AnthropicError as e:
            logger.error(f"Anthropic stream failed: {e}")
            raise translate_anthropic_error(e, self.name) from e
        if finished:
            yield StreamEnd()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
