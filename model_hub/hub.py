"""Caller-facing facade assembling adapters and decorators per provider."""

from collections.abc import AsyncIterator, Callable
from contextlib import aclosing

import httpx
from loguru import logger

from .catalog import ModelCatalog, ModelListItem
from .chat_log import ChatLogService
from .clients import ChatClient, LoggingChatClient, RateLimitedChatClient
from .config import Settings, get_settings
from .exceptions import ConfigurationError, RateLimitedError
from .images import IMAGE_CLIENTS, IMAGE_PROVIDERS, ImageGenerator, LoggingImageClient
from .memory import MemoryChatClient
from .models import DEFAULT_MAX_HISTORY, ChatMessage, ChatOptions, ImageOptions
from .providers import OpenAiCompatibleChatClient, get_provider_spec
from .rate_limiter import RateLimiter
from .storage import InMemoryChatLogSink


class ModelHub:
    """Entry point for chat, streaming chat, stateful sessions and image generation.

    Adapters are built on every call from a fresh settings read, so updated
    credentials take effect without restarting. All adapters share one
    httpx connection pool.
    """

    def __init__(
        self,
        log_service: ChatLogService | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings_source: Callable[[], Settings] = get_settings,
        limiter: RateLimiter | None = None,
        catalog: ModelCatalog | None = None,
    ) -> None:
        self.log_service = log_service or ChatLogService(InMemoryChatLogSink())
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient()
        self.settings_source = settings_source
        self.limiter = limiter
        self.catalog = catalog or ModelCatalog(self.http)

    def chat_options(self, provider: str) -> ChatOptions:
        """Adapter options for a configured provider.

        Raises:
            ConfigurationError: If the provider is unknown or has no API key
        """
        spec = get_provider_spec(provider)
        settings = self.settings_source()
        configured = settings.provider(spec.name)
        if configured is None or not configured.api_key:
            raise ConfigurationError(
                f"{spec.name} API key is not configured, set {spec.api_key_env}",
                {"provider": spec.name},
            )
        return ChatOptions(
            api_key=configured.api_key,
            base_url=configured.base_url,
            model=configured.model,
            temperature=configured.temperature,
            max_tokens=configured.max_tokens,
            organization_id=configured.organization_id,
            project_id=configured.project_id,
            custom_headers=configured.custom_headers,
            timeout=settings.http_timeout,
            connect_timeout=settings.connect_timeout,
            max_retries=settings.max_retries,
        )

    def client(
        self,
        provider: str,
        options: ChatOptions | None = None,
        caller: str | None = None,
        rate_limit_key: str | None = None,
    ) -> ChatClient:
        """Provider adapter wrapped in logging, and in rate limiting when a key is given.

        Configured credentials are used unless options are passed, in which
        case options.api_key is required.
        """
        adapter = OpenAiCompatibleChatClient(
            provider, options or self.chat_options(provider), self.http
        )
        client: ChatClient = LoggingChatClient(
            adapter, self.log_service, adapter.provider, adapter.model, caller
        )
        if rate_limit_key is not None and self.limiter is not None:
            client = RateLimitedChatClient(client, self.limiter, rate_limit_key)
        return client

    async def chat(
        self,
        provider: str,
        prompt: str | list[ChatMessage],
        caller: str | None = None,
        rate_limit_key: str | None = None,
    ) -> str:
        response = await self.client(provider, caller=caller, rate_limit_key=rate_limit_key).chat(prompt)
        return response.content or ""

    async def chat_stream(
        self,
        provider: str,
        prompt: str | list[ChatMessage],
        caller: str | None = None,
        rate_limit_key: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream the reply as text fragments."""
        client = self.client(provider, caller=caller, rate_limit_key=rate_limit_key)
        async with aclosing(client.chat_stream(prompt)) as chunks:
            async for chunk in chunks:
                if chunk.content:
                    yield chunk.content

    def with_memory(
        self,
        provider: str,
        system_prompt: str | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
        caller: str | None = None,
        rate_limit_key: str | None = None,
    ) -> MemoryChatClient:
        """A stateful session whose history persists across calls."""
        return MemoryChatClient(
            self.client(provider, caller=caller, rate_limit_key=rate_limit_key),
            system_prompt,
            max_history,
        )

    def image_client(self, provider: str, caller: str | None = None) -> ImageGenerator:
        """Image adapter for a configured provider, wrapped in logging.

        Raises:
            ConfigurationError: If the provider is unknown or has no API key
        """
        client_class = IMAGE_CLIENTS.get(provider.lower()) if provider else None
        if client_class is None:
            raise ConfigurationError(
                f"Unknown image provider: {provider!r}",
                {"supported": sorted(IMAGE_PROVIDERS)},
            )
        settings = self.settings_source()
        configured = settings.image_provider(client_class.spec.name)
        image_client = client_class(
            api_key=configured.api_key if configured else None,
            model=configured.model if configured else None,
            base_url=configured.base_url if configured else None,
            default_size=configured.size if configured else None,
            http_client=self.http,
            timeout=settings.http_timeout,
            connect_timeout=settings.connect_timeout,
            max_retries=settings.max_retries,
        )
        return LoggingImageClient(
            image_client, self.log_service, image_client.provider, image_client.model, caller
        )

    async def generate_image(
        self,
        provider: str,
        prompt: str,
        options: ImageOptions | None = None,
        caller: str | None = None,
        rate_limit_key: str | None = None,
    ) -> list[str]:
        if rate_limit_key is not None and self.limiter is not None:
            if not self.limiter.allow(rate_limit_key):
                raise RateLimitedError(rate_limit_key)
        return await self.image_client(provider, caller).generate(prompt, options)

    async def list_models(self, provider: str) -> list[ModelListItem]:
        spec = get_provider_spec(provider)
        configured = self.settings_source().provider(spec.name)
        return await self.catalog.list_models(
            spec.name,
            configured.api_key if configured else None,
            configured.base_url if configured else None,
        )

    async def aclose(self) -> None:
        """Wait for pending log writes and close the shared HTTP client."""
        await self.log_service.flush()
        if self._owns_client:
            await self.http.aclose()
        logger.debug("Model hub closed")
