import pytest

from agent_toolchain.agent import AgentEvent, DelegateTool
from agent_toolchain.errors import ConfigurationError
from agent_toolchain.plugins.timestamp_plugin import TimestampPlugin


def search(query: str) -> str:
    """Search the web."""
    return query


class NotesPlugin:
    def take_note(self, text: str) -> str:
        """Store a note."""
        return "saved"

    def hook_provide_tools(self):
        return [self.take_note]

    def hook_provide_system_prompt(self):
        return "## Notes\nUse take_note for anything worth remembering."


class BrokenPromptPlugin:
    def hook_provide_system_prompt(self):
        raise RuntimeError("no prompt today")


class TestAgent:
    def test_tools_from_callables_and_plugins(self, make_agent):
        agent = make_agent(tools=[search], plugins=[NotesPlugin()])
        assert list(agent.tools) == ["search", "take_note"]

    def test_tools_are_read_only(self, make_agent):
        agent = make_agent(tools=[search])
        with pytest.raises(TypeError):
            agent.tools["other"] = None

    def test_effective_tools_include_delegates(self, make_agent):
        research = make_agent(name="research")
        agent = make_agent(tools=[search], delegates=[research])

        tools = agent.effective_tools()

        assert tools.get_tool_names() == ["search", "research"]
        delegate = tools.get("research")
        assert isinstance(delegate, DelegateTool)
        assert delegate.description == "research agent"
        assert delegate.parameters["required"] == ["task"]

    def test_delegate_name_collision(self, make_agent):
        with pytest.raises(ConfigurationError):
            make_agent(tools=[search], delegates=[make_agent(name="search")])

    def test_add_delegate_after_freeze(self, make_agent):
        agent = make_agent()
        agent.freeze()
        with pytest.raises(ConfigurationError):
            agent.add_delegate(make_agent(name="late"))

    def test_mutual_delegation_before_use(self, make_agent):
        a = make_agent(name="a")
        b = make_agent(name="b", delegates=[a])
        a.add_delegate(b)
        assert a.delegate_agents == (b,)
        assert b.delegate_agents == (a,)

    def test_system_prompt(self, make_agent):
        research = make_agent(name="research")
        agent = make_agent(tools=[search], delegates=[research], plugins=[NotesPlugin()])

        prompt = agent.system_prompt()

        assert prompt.startswith("You are an AI assistant named main.\nRole: main agent")
        assert "Instructions:\nYou are the main agent." in prompt
        assert "- search: Search the web." in prompt
        assert "You can transfer to these agents:\n- research: research agent" in prompt
        assert prompt.endswith("## Notes\nUse take_note for anything worth remembering.")

    def test_broken_plugin_prompt_is_skipped(self, make_agent):
        agent = make_agent(plugins=[BrokenPromptPlugin()])
        assert "Instructions:" in agent.system_prompt()

    def test_timestamp_plugin_prompt(self, make_agent):
        from datetime import datetime, timezone

        plugin = TimestampPlugin(
            timezone_offset=-120,
            timezone_name="CEST",
            clock=lambda: datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
        )
        agent = make_agent(plugins=[plugin])
        assert "Current time: 2024-05-01 12:00:00 CEST" in agent.system_prompt()


class TestAgentEvent:
    def test_descriptions(self):
        assert (
            AgentEvent("started", "research", "find x", parent="main").describe()
            == "Agent 'research' (parent: main) started: find x"
        )
        assert (
            AgentEvent("agent_transfer", "main", "needs the web", target="research").describe()
            == "Agent 'main' delegated to 'research': needs the web"
        )
        assert (
            AgentEvent("tool_completed", "main", "ok", target="search").describe()
            == "Agent 'main' completed tool: search"
        )
        assert AgentEvent("error", "main", "boom").describe() == "Agent 'main' error: boom"
