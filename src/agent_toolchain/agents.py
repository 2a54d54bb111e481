"""
Example agent configurations: a general assistant that hands research work to
a web-searching research agent.
"""

import logging
from typing import Optional

from .agent import Agent
from .config import Settings
from .plugins.timestamp_plugin import TimestampPlugin
from .plugins.web_plugin import WebPlugin
from .providers import Toolchain
from .providers.anthropic_client import AnthropicProvider
from .providers.openai_client import OpenAIProvider

logger = logging.getLogger(__name__)

RESEARCH_INSTRUCTIONS = """Your job is to help find answers and information by searching the internet. When given a request:

1. Use the web_search tool to find relevant information
2. Read the most promising pages with web_read_page before answering
3. Adapt your response style to the request: brief for quick questions, detailed for in-depth ones
4. If a search doesn't give good results, rephrase and search again
5. Include sources when they add credibility to your answer

If you can't find a good answer, be honest about it."""

ASSISTANT_INSTRUCTIONS = """Be concise, friendly, and direct in your responses.

- Answer directly when you can
- Transfer questions that need current or online information to the research agent
- You can call several tools in a single turn when they don't depend on each other"""


def build_toolchain(settings: Settings) -> Toolchain:
    """Register one client per supported backend."""
    return Toolchain(
        [
            OpenAIProvider(api_key=settings.openai_api_key),
            AnthropicProvider(api_key=settings.anthropic_api_key),
        ]
    )


def create_research_agent(provider, model: str, settings: Optional[Settings] = None) -> Agent:
    """Create a research agent with web search and the current time."""
    settings = settings or Settings()
    plugins = [
        WebPlugin(
            api_key=settings.google_search_api_key,
            engine_id=settings.google_search_engine_id,
        ),
        TimestampPlugin(),
    ]
    instructions = RESEARCH_INSTRUCTIONS
    if not (settings.google_search_api_key and settings.google_search_engine_id):
        instructions += (
            "\n\nNOTE: Web search is not configured. Tell the user that "
            "GOOGLE_SEARCH_API_KEY and GOOGLE_SEARCH_ENGINE_ID must be set for research to work."
        )
    return Agent(
        name="researchAgent",
        description=(
            "Perform in-depth research on topics using internet sources. Handles requests like "
            '"Research quantum computing advances" or "What are the latest developments in AI safety?"'
        ),
        instructions=instructions,
        provider=provider,
        model=model,
        plugins=plugins,
    )


def create_assistant_agent(provider, model: str, delegates=()) -> Agent:
    return Agent(
        name="assistant",
        description="General-purpose chat assistant",
        instructions=ASSISTANT_INSTRUCTIONS,
        provider=provider,
        model=model,
        plugins=[TimestampPlugin()],
        delegate_agents=delegates,
    )


def create_default_agent(
    settings: Settings, toolchain: Optional[Toolchain] = None, model: Optional[str] = None
) -> Agent:
    """Assistant for ``model`` (default: ``settings.model``) delegating to a research agent."""
    toolchain = toolchain or build_toolchain(settings)
    model = model or settings.model
    provider = toolchain.provider_for(model)
    research = create_research_agent(provider, model, settings)
    logger.info(f"Created default agent on {provider.name} with model {model}")
    return create_assistant_agent(provider, model, delegates=[research])
