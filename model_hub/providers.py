"""OpenAI-compatible chat adapter and the provider registry."""

from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from .exceptions import ApiError, ApiTimeoutError, ConfigurationError
from .models import ChatOptions, ChatRequest, ChatResponse, Prompt, StreamOptions, as_request
from .retry import upstream_retrying
from .streaming import decode_chunks, iter_sse_data, normalize_completion


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of one OpenAI-compatible chat provider."""

    name: str
    base_url: str
    default_model: str
    completions_path: str = "/v1/chat/completions"
    models_path: str | None = None

    @property
    def api_key_env(self) -> str:
        """Environment variable holding this provider's API key."""
        return f"MODEL_HUB_{self.name.upper()}__API_KEY"


PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        name="openai",
        base_url="https://api.openai.com",
        default_model="gpt-4o",
        models_path="/v1/models",
    ),
    "siliconflow": ProviderSpec(
        name="siliconflow",
        base_url="https://api.siliconflow.cn",
        default_model="Qwen/Qwen2.5-7B-Instruct",
        models_path="/v1/models",
    ),
    "zhipu": ProviderSpec(
        name="zhipu",
        base_url="https://open.bigmodel.cn/api/paas/v4",
        default_model="glm-4-flash",
        completions_path="/chat/completions",
    ),
}


def get_provider_spec(name: str) -> ProviderSpec:
    """Look up a registered provider.

    Raises:
        ConfigurationError: If the provider is not registered
    """
    spec = PROVIDERS.get(name.lower()) if name else None
    if spec is None:
        raise ConfigurationError(
            f"Unknown provider: {name!r}",
            {"supported": sorted(PROVIDERS)},
        )
    return spec


class OpenAiCompatibleChatClient:
    """Chat adapter for any vendor speaking the OpenAI chat completions protocol.

    One instance is bound to a (provider, model, credentials) tuple. It holds no
    per-call state, so a single instance can serve concurrent calls.
    """

    def __init__(
        self,
        provider: str,
        options: ChatOptions,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            provider: Registered provider name, or any name when options.base_url is set
            options: Credentials, endpoint and generation defaults
            http_client: Shared client; a private one is created when omitted

        Raises:
            ConfigurationError: If the API key is missing or the provider is unknown
        """
        spec = PROVIDERS.get(provider.lower()) if provider else None
        registered = spec is not None
        if spec is None:
            if not options.base_url:
                spec = get_provider_spec(provider)
            else:
                spec = ProviderSpec(name=provider, base_url=options.base_url, default_model="")
        if not options.api_key:
            env_hint = spec.api_key_env if registered else "the api_key option"
            raise ConfigurationError(
                f"{provider} API key is not configured, set {env_hint}",
                {"provider": provider},
            )

        self.provider = spec.name
        self.options = options
        self.base_url = (options.base_url or spec.base_url).rstrip("/")
        self.completions_path = options.completions_path or spec.completions_path
        self.model = options.model or spec.default_model or None
        self.timeout = httpx.Timeout(options.timeout, connect=options.connect_timeout)

        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=self.timeout)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.completions_path}"

    def prepare(self, request: ChatRequest) -> ChatRequest:
        """Fill the model and adapter defaults into fields the request leaves unset."""
        updates: dict[str, Any] = {}
        if request.model is None and self.model:
            updates["model"] = self.model
        for name, value in self.options.generation_fields().items():
            if getattr(request, name) is None:
                updates[name] = value
        return request.model_copy(update=updates) if updates else request

    def headers(self, stream: bool = False) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.options.api_key}",
            "Content-Type": "application/json",
        }
        if self.options.organization_id:
            headers["OpenAI-Organization"] = self.options.organization_id
        if self.options.project_id:
            headers["OpenAI-Project"] = self.options.project_id
        if stream:
            headers["Accept"] = "text/event-stream"
        if self.options.custom_headers:
            headers.update(self.options.custom_headers)
        return headers

    def _api_error(self, error: httpx.HTTPError, model: str | None) -> ApiError:
        if isinstance(error, httpx.TimeoutException):
            return ApiTimeoutError(
                f"{self.provider} request timed out: {error!r}", self.provider, model
            )
        return ApiError(f"{self.provider} request failed: {error!r}", self.provider, model)

    async def _raise_for_status(self, response: httpx.Response, model: str | None) -> None:
        if response.is_success:
            return
        await response.aread()
        logger.error(f"{self.provider} returned HTTP {response.status_code}")
        raise ApiError(
            f"{self.provider} returned HTTP {response.status_code}: {response.text[:500]}",
            self.provider,
            model,
            status_code=response.status_code,
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Run a unary chat completion.

        Raises:
            ApiTimeoutError: If the upstream does not answer in time
            ApiError: On transport failure, non-2xx status or malformed body
        """
        prepared = self.prepare(request).model_copy(update={"stream": None, "stream_options": None})
        model = prepared.model
        try:
            async for attempt in upstream_retrying(self.provider, self.options.max_retries):
                with attempt:
                    response = await self.http.post(
                        self.url,
                        json=prepared.to_payload(),
                        headers=self.headers(),
                        timeout=self.timeout,
                    )
        except httpx.HTTPError as e:
            logger.error(f"{self.provider} completion failed: {e!r}")
            raise self._api_error(e, model) from e

        await self._raise_for_status(response, model)

        try:
            body = response.json()
            if not isinstance(body, dict) or not body.get("choices"):
                raise ValueError("response has no choices")
            return normalize_completion(body)
        except (ValueError, ValidationError) as e:
            raise ApiError(
                f"{self.provider} returned a malformed response: {e}", self.provider, model
            ) from e

    async def stream(self, request: ChatRequest) -> AsyncIterator[ChatResponse]:
        """Run a streaming chat completion, yielding one response per SSE chunk.

        Closing the iterator early closes the upstream HTTP response.
        """
        prepared = self.prepare(request).model_copy(
            update={"stream": True, "stream_options": StreamOptions(include_usage=True)}
        )
        model = prepared.model
        try:
            async with self.http.stream(
                "POST",
                self.url,
                json=prepared.to_payload(),
                headers=self.headers(stream=True),
                timeout=self.timeout,
            ) as response:
                await self._raise_for_status(response, model)
                events = iter_sse_data(response.aiter_lines())
                async with aclosing(events), aclosing(decode_chunks(events)) as chunks:
                    async for chunk in chunks:
                        yield chunk
        except httpx.HTTPError as e:
            logger.error(f"{self.provider} stream failed: {e!r}")
            raise self._api_error(e, model) from e

    async def chat(self, prompt: Prompt) -> ChatResponse:
        return await self.complete(as_request(prompt))

    def chat_stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        return self.stream(as_request(prompt))

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self.http.aclose()
