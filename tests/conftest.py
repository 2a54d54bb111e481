import asyncio
from typing import List

import pytest

from agent_toolchain.agent import Agent
from agent_toolchain.messages import ToolCallRequest
from agent_toolchain.providers.base import FinalMessage, ProviderClient, ToolInvocationRequest


class ScriptedProvider(ProviderClient):
    """Provider that replays a fixed list of results and records what it was sent.

    Script entries may be a ProviderResult, an exception instance (raised), or a
    callable taking the conversation snapshot and returning either.
    """

    name = "scripted"
    model_prefixes = ("scripted-",)

    def __init__(self, script=(), delay: float = 0.0):
        self.script = list(script)
        self.delay = delay
        self.calls: List[dict] = []
        self.in_flight = 0
        self.peak = 0  # most sends awaiting their delay at once

    async def send(self, conversation, tools, model, system_prompt=None):
        self.calls.append(
            {
                "conversation": conversation,
                "tools": [t["name"] for t in tools],
                "model": model,
                "system_prompt": system_prompt,
            }
        )
        if self.delay:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            try:
                await asyncio.sleep(self.delay)
            finally:
                self.in_flight -= 1
        if not self.script:
            raise AssertionError("ScriptedProvider ran out of results")
        entry = self.script.pop(0)
        if callable(entry):
            entry = entry(conversation)
        if isinstance(entry, Exception):
            raise entry
        return entry


def final(text: str) -> FinalMessage:
    return FinalMessage(text)


def calls(*requests, text=None) -> ToolInvocationRequest:
    """``calls(("t1", "search", {"query": "x"}), ...)``"""
    return ToolInvocationRequest(tuple(ToolCallRequest(*r) for r in requests), text)


@pytest.fixture
def make_agent():
    def _make(name="main", script=(), tools=(), delegates=(), plugins=(), provider=None):
        provider = provider or ScriptedProvider(script)
        return Agent(
            name=name,
            description=f"{name} agent",
            instructions=f"You are the {name} agent.",
            provider=provider,
            model="scripted-1",
            tools=tools,
            plugins=plugins,
            delegate_agents=delegates,
        )

    return _make
