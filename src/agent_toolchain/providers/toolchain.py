import logging
from typing import Dict, List

from ..errors import ConfigurationError
from .base import ProviderClient

logger = logging.getLogger(__name__)


class Toolchain:
    """Registry of provider clients, routing each model to the first that can handle it."""

    def __init__(self, providers=None):
        self._providers: Dict[str, ProviderClient] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: ProviderClient) -> None:
        self._providers[provider.name] = provider
        logger.info(
            f"Registered provider '{provider.name}' (total providers: {len(self._providers)})"
        )

    def get(self, name: str) -> ProviderClient:
        return self._providers.get(name)

    def names(self) -> List[str]:
        return list(self._providers)

    def provider_for(self, model: str) -> ProviderClient:
        for provider in self._providers.values():
            if provider.can_handle(model):
                logger.debug(f"Using provider '{provider.name}' for model {model}")
                return provider
        raise ConfigurationError(
            f"No registered provider can handle model '{model}' "
            f"(registered: {', '.join(self._providers) or 'none'})"
        )

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
