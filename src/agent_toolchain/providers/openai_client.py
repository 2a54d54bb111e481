import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

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
    parse_arguments,
)

logger = logging.getLogger(__name__)


def to_openai_messages(
    conversation: Sequence[Message], system_prompt: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Convert history to chat-completions messages.

    Consecutive tool-call messages become one assistant message carrying all
    calls. Calls without a result are dropped since the API rejects them.
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    answered = answered_call_ids(conversation)
    previous_role = None
    for message in conversation:
        if message.role is Role.USER:
            messages.append({"role": "user", "content": message.text or ""})
        elif message.role is Role.ASSISTANT:
            messages.append({"role": "assistant", "content": message.text or ""})
        elif message.role is Role.TOOL_CALL:
            call = message.call
            if call.id not in answered:
                continue
            entry = {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            if previous_role is Role.TOOL_CALL and messages[-1].get("tool_calls"):
                messages[-1]["tool_calls"].append(entry)
            else:
                messages.append(
                    {"role": "assistant", "content": message.text, "tool_calls": [entry]}
                )
        elif message.role is Role.TOOL_RESULT:
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": message.tool_call_id,
                    "content": message.text or "",
                }
            )
        else:
            # agent events are for people, not for the model
            continue
        previous_role = message.role
    return messages


def to_openai_tools(tools: Sequence[Dict]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("parameters", {"type": "object", "properties": {}}),
            },
        }
        for tool in tools
    ]


def translate_openai_error(error: Exception, provider: str = "openai") -> ProviderFailure:
    status = getattr(error, "status_code", None)
    message = str(error)
    if isinstance(error, openai.RateLimitError):
        return RateLimited(message, provider, status)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthFailure(message, provider, status)
    if isinstance(
        error,
        (
            openai.BadRequestError,
            openai.NotFoundError,
            openai.UnprocessableEntityError,
            openai.APIResponseValidationError,
        ),
    ):
        return Malformed(message, provider, status)
    return Unavailable(message, provider, status)


class OpenAIProvider(ProviderClient):
    """Chat-completions client for OpenAI and OpenAI-compatible backends."""

    name = "openai"
    model_prefixes = ("gpt-", "o1", "o3", "o4", "chatgpt-")

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self._client = client
        self._api_key = api_key
        self._base_url = base_url

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            kwargs = {"api_key": self._api_key or os.getenv("OPENAI_API_KEY")}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    def _request(self, conversation, tools, model, system_prompt) -> Dict[str, Any]:
        request = {
            "model": model,
            "messages": to_openai_messages(conversation, system_prompt),
        }
        if tools:
            request["tools"] = to_openai_tools(tools)
            request["tool_choice"] = "auto"
        return request

    async def send(self, conversation, tools, model, system_prompt=None):
        request = self._request(conversation, tools, model, system_prompt)
        try:
            response = await self.client.chat.completions.create(**request)
        except openai.OpenAIError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise translate_openai_error(e, self.name) from e

        if not response.choices:
            raise Malformed("Response contained no choices", self.name)
        message = response.choices[0].message

        if message.tool_calls:
            calls = tuple(
                ToolCallRequest(
                    tc.id,
                    tc.function.name,
                    parse_arguments(tc.function.arguments, self.name),
                )
                for tc in message.tool_calls
            )
            return ToolInvocationRequest(calls, message.content or None)
        return FinalMessage(message.content or "")

    async def stream(self, conversation, tools, model, system_prompt=None):
        request = self._request(conversation, tools, model, system_prompt)
        try:
            stream = await self.client.chat.completions.create(**request, stream=True)
            finished = False
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield TextDelta(delta.content)
                for tc in delta.tool_calls or []:
                    function = tc.function
                    yield ToolCallDelta(
                        tc.index,
                        tc.id,
                        function.name if function else None,
                        (function.arguments or "") if function else "",
                    )
                if chunk.choices[0].finish_reason:
                    finished = True
        except openai.OpenAIError as e:
            logger.error(f"OpenAI stream failed: {e}")
            raise translate_openai_error(e, self.name) from e
        if finished:
            yield StreamEnd()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
