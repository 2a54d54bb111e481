import asyncio

import pytest
from conftest import ScriptedProvider, calls, final

from agent_toolchain.config import Settings
from agent_toolchain.errors import ConfigurationError, TurnCancelled
from agent_toolchain.messages import Role
from agent_toolchain.service import MessageService


def search(query: str) -> str:
    """Search the web."""
    return f"results for {query}"


async def long_job(name: str) -> str:
    """Takes forever."""
    await asyncio.sleep(10)
    return name


async def wait_for_pending(service):
    while not service.conversation.pending_calls():
        await asyncio.sleep(0.01)


class TestServiceConfiguration:
    def test_unknown_policy(self, make_agent):
        with pytest.raises(ConfigurationError):
            MessageService(make_agent(), policy="drop")

    def test_policy_from_settings(self, make_agent):
        service = MessageService(make_agent(), settings=Settings(submit_policy="queue"))
        assert service.policy == "queue"


@pytest.mark.asyncio
class TestMessageService:
    async def test_submit(self, make_agent):
        service = MessageService(make_agent(script=[final("hello")]))

        outcome = await service.submit("hi")

        assert outcome.ok
        assert outcome.text == "hello"
        assert [(m.role, m.text) for m in service.messages] == [
            (Role.USER, "hi"),
            (Role.ASSISTANT, "hello"),
        ]
        assert service.last_outcome == outcome
        assert not service.is_running

    async def test_history_is_shared_across_turns(self, make_agent):
        agent = make_agent(script=[final("one"), final("two")])
        service = MessageService(agent)

        await service.submit("first")
        await service.submit("second")

        assert [m.text for m in agent.provider.calls[1]["conversation"]] == ["first", "one", "second"]

    async def test_submit_stream_yields_turn_messages(self, make_agent):
        agent = make_agent(
            script=[calls(("t1", "search", {"query": "x"})), final("found it")], tools=[search]
        )
        service = MessageService(agent)

        streamed = [m async for m in service.submit_stream("look for x")]

        assert [m.role for m in streamed] == [
            Role.USER,
            Role.TOOL_CALL,
            Role.TOOL_RESULT,
            Role.ASSISTANT,
        ]
        assert service.last_outcome.text == "found it"

    async def test_subscribers_see_appends_and_deletes(self, make_agent):
        service = MessageService(make_agent(script=[final("hello")]))
        queue = service.subscribe()

        await service.submit("hi")
        user = service.messages[0]
        service.delete_message(user.id)

        events = []
        while not queue.empty():
            action, message = queue.get_nowait()
            events.append((action, message.text))
        assert events == [("append", "hi"), ("append", "hello"), ("delete", "hi")]

        service.unsubscribe(queue)
        service.delete_message(service.messages[0].id)
        assert queue.empty()

    async def test_delete_unknown_message(self, make_agent):
        service = MessageService(make_agent())
        assert service.delete_message("missing") == []

    async def test_delete_pending_call_during_turn(self, make_agent):
        agent = make_agent(
            script=[calls(("t1", "long_job", {"name": "x"})), final("skipped it")], tools=[long_job]
        )
        service = MessageService(agent, record_events=False)

        turn = asyncio.create_task(service.submit("start"))
        await wait_for_pending(service)
        call = next(m for m in service.messages if m.role is Role.TOOL_CALL)
        removed = service.delete_message(call.id)

        outcome = await asyncio.wait_for(turn, timeout=2)

        assert [m.id for m in removed] == [call.id]
        assert outcome.text == "skipped it"
        assert [m.role for m in service.messages] == [Role.USER, Role.ASSISTANT]

    async def test_new_submission_cancels_running_turn(self, make_agent):
        agent = make_agent(
            script=[calls(("t1", "long_job", {"name": "x"})), final("second answer")],
            tools=[long_job],
        )
        service = MessageService(agent, record_events=False)

        first = asyncio.create_task(service.submit("first"))
        await wait_for_pending(service)
        second = await asyncio.wait_for(service.submit("second"), timeout=2)
        first_outcome = await first

        assert isinstance(first_outcome.error, TurnCancelled)
        assert second.text == "second answer"
        texts = [m.text for m in service.messages if m.role in (Role.USER, Role.ASSISTANT)]
        assert texts == ["first", "second", "second answer"]

    async def test_overlapping_submissions_start_one_turn(self, make_agent):
        provider = ScriptedProvider([final("a"), final("b")], delay=0.05)
        service = MessageService(make_agent(provider=provider), record_events=False)

        first = asyncio.create_task(service.submit("one"))
        while not provider.in_flight:
            await asyncio.sleep(0.001)
        second, third = await asyncio.wait_for(
            asyncio.gather(service.submit("two"), service.submit("three")), timeout=2
        )
        first_outcome = await first

        assert provider.peak == 1
        assert isinstance(first_outcome.error, TurnCancelled)
        assert isinstance(second.error, TurnCancelled)
        assert third.text == "a"
        texts = [m.text for m in service.messages if m.role in (Role.USER, Role.ASSISTANT)]
        assert texts == ["one", "three", "a"]

    async def test_submit_stream_skips_other_turns(self, make_agent):
        provider = ScriptedProvider([final("one"), final("two")], delay=0.05)
        service = MessageService(make_agent(provider=provider), policy="queue")

        first = asyncio.create_task(service.submit("first"))
        await asyncio.sleep(0.01)
        streamed = [m async for m in service.submit_stream("second")]

        assert [m.text for m in streamed] == ["second", "two"]
        assert (await first).text == "one"

    async def test_queue_policy_runs_turns_in_order(self, make_agent):
        provider = ScriptedProvider([final("one"), final("two")], delay=0.05)
        service = MessageService(make_agent(provider=provider), policy="queue")

        first, second = await asyncio.gather(service.submit("first"), service.submit("second"))

        assert first.text == "one"
        assert second.text == "two"
        assert [m.text for m in service.messages] == ["first", "one", "second", "two"]

    async def test_cancel(self, make_agent):
        agent = make_agent(script=[calls(("t1", "long_job", {"name": "x"}))], tools=[long_job])
        service = MessageService(agent, record_events=False)

        turn = asyncio.create_task(service.submit("start"))
        await wait_for_pending(service)
        await service.cancel()

        outcome = await turn
        assert isinstance(outcome.error, TurnCancelled)
        assert not service.is_running

    async def test_failed_turn_is_reported(self, make_agent):
        from agent_toolchain.errors import AuthFailure

        service = MessageService(make_agent(script=[AuthFailure("bad key")]))

        outcome = await service.submit("hi")

        assert isinstance(outcome.error, AuthFailure)
        assert [m.role for m in service.messages] == [Role.USER, Role.AGENT_EVENT]
        assert service.messages[1].text == "Agent 'main' error: bad key"

    async def test_delegate_activity_is_recorded(self, make_agent):
        research = make_agent(name="research", script=[final("Paris")])
        main = make_agent(
            script=[calls(("t1", "research", {"task": "capital of France?"})), final("Paris")],
            delegates=[research],
        )
        service = MessageService(main)

        await service.submit("capital?")

        events = [m for m in service.messages if m.role is Role.AGENT_EVENT]
        assert [m.agent for m in events] == ["main", "research", "research"]
        assert events[0].text == "Agent 'main' delegated to 'research': capital of France?"
        assert events[1].text.startswith("Agent 'research' (parent: main) started")
        assert events[2].text == "Agent 'research' completed with result: Paris"

    async def test_set_agent(self, make_agent):
        service = MessageService(make_agent(script=[final("from first")]))
        await service.submit("hi")

        other = make_agent(name="other", script=[final("from other")])
        service.set_agent(other)
        outcome = await service.submit("hi again")

        assert outcome.agent == "other"
        assert len(other.provider.calls[0]["conversation"]) == 3
