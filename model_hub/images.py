"""Image generation adapters and the logging image decorator."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from .chat_log import ChatLogService
from .clients import CALL_CANCELLED
from .exceptions import ApiError, ApiTimeoutError, ConfigurationError, InvalidParamError
from .models import CallType, ImageOptions
from .retry import upstream_retrying

DEFAULT_IMAGE_SIZE = "1024x1024"


@dataclass(frozen=True)
class ImageProviderSpec:
    """Static description of one image generation API."""

    name: str
    base_url: str
    default_model: str
    generations_path: str = "/v1/images/generations"

    @property
    def api_key_env(self) -> str:
        return f"MODEL_HUB_IMAGE_{self.name.upper()}__API_KEY"


IMAGE_PROVIDERS: dict[str, ImageProviderSpec] = {
    "openai": ImageProviderSpec(
        name="openai",
        base_url="https://api.openai.com",
        default_model="dall-e-3",
    ),
    "zhipu": ImageProviderSpec(
        name="zhipu",
        base_url="https://open.bigmodel.cn/api/paas/v4",
        default_model="cogview-3-flash",
        generations_path="/images/generations",
    ),
    "siliconflow": ImageProviderSpec(
        name="siliconflow",
        base_url="https://api.siliconflow.cn",
        default_model="black-forest-labs/FLUX.1-schnell",
    ),
}


class ImageGenerator(Protocol):
    """Protocol for image clients and their decorators."""

    async def generate(self, prompt: str, options: ImageOptions | None = None) -> list[str]: ...


class ImageClient:
    """Base image adapter: POST a JSON body, read image URLs from the response."""

    spec: ImageProviderSpec
    url_list_field = "data"

    def __init__(
        self,
        api_key: str | None,
        model: str | None = None,
        base_url: str | None = None,
        default_size: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        connect_timeout: float = 10.0,
        max_retries: int = 3,
    ) -> None:
        if not api_key:
            raise ConfigurationError(
                f"{self.spec.name} image API key is not configured, set {self.spec.api_key_env}",
                {"provider": self.spec.name},
            )
        self.api_key = api_key
        self.model = model or self.spec.default_model
        self.base_url = (base_url or self.spec.base_url).rstrip("/")
        self.default_size = default_size
        self.max_retries = max_retries
        self.timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=self.timeout)

    @property
    def provider(self) -> str:
        return self.spec.name

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.spec.generations_path}"

    def size(self, options: ImageOptions) -> str:
        return options.size or self.default_size or DEFAULT_IMAGE_SIZE

    def payload(self, prompt: str, options: ImageOptions) -> dict[str, Any]:
        return {"prompt": prompt, "model": self.model, "size": self.size(options)}

    def parse_urls(self, body: Any) -> list[str]:
        items = body.get(self.url_list_field) if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise ValueError(f"response has no {self.url_list_field!r} list")
        return [item["url"] for item in items if isinstance(item, dict) and item.get("url")]

    async def generate(self, prompt: str, options: ImageOptions | None = None) -> list[str]:
        """Generate images for a prompt.

        Returns:
            Image URLs, possibly empty

        Raises:
            InvalidParamError: If the prompt is blank
            ApiTimeoutError: If the upstream does not answer in time
            ApiError: On transport failure, non-2xx status or malformed body
        """
        if not prompt or not prompt.strip():
            raise InvalidParamError("Image prompt must not be blank")
        options = options or ImageOptions()
        payload = self.payload(prompt, options)
        logger.info(f"Generating image: provider={self.provider}, model={self.model}, size={self.size(options)}")

        try:
            async for attempt in upstream_retrying(self.provider, self.max_retries):
                with attempt:
                    response = await self.http.post(
                        self.url,
                        json=payload,
                        headers={
                            "Authorization": f"Bearer {self.api_key}",
                            "Content-Type": "application/json",
                        },
                        timeout=self.timeout,
                    )
        except httpx.TimeoutException as e:
            raise ApiTimeoutError(
                f"{self.provider} image request timed out: {e!r}", self.provider, self.model
            ) from e
        except httpx.HTTPError as e:
            raise ApiError(
                f"{self.provider} image request failed: {e!r}", self.provider, self.model
            ) from e

        if not response.is_success:
            raise ApiError(
                f"{self.provider} returned HTTP {response.status_code}: {response.text[:500]}",
                self.provider,
                self.model,
                status_code=response.status_code,
            )
        try:
            urls = self.parse_urls(response.json())
        except ValueError as e:
            raise ApiError(
                f"{self.provider} returned a malformed image response: {e}", self.provider, self.model
            ) from e

        logger.info(f"Image generation succeeded: {len(urls)} image(s)")
        return urls

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()


class OpenAiImageClient(ImageClient):
    """OpenAI images API (DALL-E)."""

    spec = IMAGE_PROVIDERS["openai"]

    def payload(self, prompt: str, options: ImageOptions) -> dict[str, Any]:
        payload = super().payload(prompt, options)
        # dall-e-3 only accepts a single image per request
        payload["n"] = 1 if self.model == "dall-e-3" else min(max(options.n, 1), 10)
        payload["response_format"] = "url"
        if options.quality:
            payload["quality"] = options.quality
        if options.style:
            payload["style"] = options.style
        return payload


class ZhipuImageClient(ImageClient):
    """Zhipu CogView images API."""

    spec = IMAGE_PROVIDERS["zhipu"]

    def payload(self, prompt: str, options: ImageOptions) -> dict[str, Any]:
        payload = super().payload(prompt, options)
        if options.watermark:
            payload["watermark_enabled"] = True
        return payload


class SiliconFlowImageClient(ImageClient):
    """SiliconFlow images API. Sizes go in ``image_size``, URLs come back in ``images``."""

    spec = IMAGE_PROVIDERS["siliconflow"]
    url_list_field = "images"

    def payload(self, prompt: str, options: ImageOptions) -> dict[str, Any]:
        return {"prompt": prompt, "model": self.model, "image_size": self.size(options)}


IMAGE_CLIENTS: dict[str, type[ImageClient]] = {
    "openai": OpenAiImageClient,
    "zhipu": ZhipuImageClient,
    "siliconflow": SiliconFlowImageClient,
}


def image_summary(urls: list[str]) -> str:
    if not urls:
        return "No images generated"
    return f"Generated {len(urls)} image(s): {', '.join(urls)}"


class LoggingImageClient:
    """Records one log record per image generation."""

    def __init__(
        self,
        delegate: ImageGenerator,
        log_service: ChatLogService,
        provider: str,
        model: str | None = None,
        caller: str | None = None,
    ) -> None:
        self.delegate = delegate
        self.log_service = log_service
        self.provider = provider
        self.model = model
        self.caller = caller

    async def generate(self, prompt: str, options: ImageOptions | None = None) -> list[str]:
        started = time.perf_counter()
        try:
            urls = await self.delegate.generate(prompt, options)
        except Exception as e:
            self.log_service.log_call(
                provider=self.provider,
                model=self.model,
                call_type=CallType.IMAGE,
                started=started,
                user_message=prompt,
                error=e,
                caller=self.caller,
            )
            raise
        except asyncio.CancelledError:
            self.log_service.log_call(
                provider=self.provider,
                model=self.model,
                call_type=CallType.IMAGE,
                started=started,
                user_message=prompt,
                error=CALL_CANCELLED,
                caller=self.caller,
            )
            raise

        self.log_service.log_call(
            provider=self.provider,
            model=self.model,
            call_type=CallType.IMAGE,
            started=started,
            user_message=prompt,
            response=image_summary(urls),
            caller=self.caller,
        )
        return urls
