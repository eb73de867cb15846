"""ProviderFactory — builds Provider variants from stored configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from prismflow.config import settings
from prismflow.errors import ConfigurationError
from prismflow.llm.anthropic_provider import AnthropicProvider
from prismflow.llm.gemini import GeminiProvider
from prismflow.llm.models import ProviderType
from prismflow.llm.ollama import OllamaProvider
from prismflow.llm.openai_provider import OpenAIProvider

if TYPE_CHECKING:
    from prismflow.llm.base import Provider
    from prismflow.llm.models import ProviderConfig, SystemSettings

logger = logging.getLogger(__name__)

_PROVIDER_CLASSES: dict[ProviderType, type[Provider]] = {
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.CLAUDE: AnthropicProvider,
    ProviderType.GEMINI: GeminiProvider,
    ProviderType.OLLAMA: OllamaProvider,
}


class ProviderFactory:
    """Creates providers that share two outbound HTTP clients.

    One client connects directly; the other routes through ``proxy_url``
    and is handed to providers whose config sets ``use_proxy``.

    Args:
        proxy_url: Outbound proxy URL (default from settings).
        http_client: Direct client override, mainly for tests.
        proxy_client: Proxy client override, mainly for tests.
    """

    def __init__(
        self,
        proxy_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        proxy_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._proxy_url = proxy_url if proxy_url is not None else settings.proxy_url
        self._http_client = http_client
        self._proxy_client = proxy_client

    def _client_for(self, config: ProviderConfig) -> httpx.AsyncClient:
        timeout = settings.request_timeout_seconds
        if config.use_proxy and self._proxy_url:
            if self._proxy_client is None:
                self._proxy_client = httpx.AsyncClient(proxy=self._proxy_url, timeout=timeout)
            return self._proxy_client
        if config.use_proxy:
            logger.warning("Provider '%s' requests a proxy but none is configured", config.id)
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=timeout)
        return self._http_client

    def create(self, config: ProviderConfig, model: str | None = None) -> Provider:
        """Build the provider variant for ``config.type``."""
        provider_cls = _PROVIDER_CLASSES.get(config.type)
        if provider_cls is None:
            msg = f"Unsupported provider type: {config.type}"
            raise ConfigurationError(msg)
        provider = provider_cls(
            api_key=config.api_key,
            api_url=config.api_url or None,
            model=config.resolve_model(model),
            http_client=self._client_for(config),
        )
        logger.info(
            "Created %s provider '%s' (model=%s, proxy=%s)",
            provider.name,
            config.id,
            provider.model,
            config.use_proxy,
        )
        return provider

    def resolve_active(self, system_settings: SystemSettings) -> Provider | None:
        """Build the default provider named by ``ACTIVE_AI_PROVIDER_ID``, if any."""
        config = system_settings.get_provider(system_settings.active_ai_provider_id)
        if config is None or not config.enabled:
            return None
        return self.create(config)

    async def aclose(self) -> None:
        for client in (self._http_client, self._proxy_client):
            if client is not None:
                await client.aclose()
