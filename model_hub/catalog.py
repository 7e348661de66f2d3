"""Provider model catalog with a one-day in-memory cache."""

import time
from collections.abc import Callable

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from .exceptions import ApiError, ApiTimeoutError, ConfigurationError
from .providers import get_provider_spec

MODEL_CACHE_TTL_SECONDS = 24 * 60 * 60


class ModelListItem(BaseModel):
    id: str
    name: str
    created: int | None = None


class _ModelData(BaseModel):
    id: str
    created: int | None = None


class _ModelListResponse(BaseModel):
    data: list[_ModelData] = []


class ModelCatalog:
    """Lists the models a provider serves, caching each provider's list."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        ttl_seconds: float = MODEL_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
        self._owns_client = http_client is None
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.cache: dict[str, tuple[list[ModelListItem], float]] = {}

    def _cached(self, provider: str) -> list[ModelListItem] | None:
        entry = self.cache.get(provider)
        if entry is None:
            logger.debug(f"Model list cache miss: {provider}")
            return None
        items, expiry_time = entry
        if self._clock() >= expiry_time:
            del self.cache[provider]
            logger.debug(f"Model list cache expired: {provider}")
            return None
        return items

    async def list_models(
        self, provider: str, api_key: str | None, base_url: str | None = None
    ) -> list[ModelListItem]:
        """List models for a provider.

        Raises:
            ConfigurationError: If the provider has no model listing or no API key
            ApiError: If the upstream call fails
        """
        spec = get_provider_spec(provider)
        if not spec.models_path:
            raise ConfigurationError(f"{provider} does not support listing models")
        if not api_key:
            raise ConfigurationError(
                f"{provider} API key is not configured, set {spec.api_key_env}",
                {"provider": provider},
            )

        cached = self._cached(spec.name)
        if cached is not None:
            return cached

        url = f"{(base_url or spec.base_url).rstrip('/')}{spec.models_path}"
        try:
            response = await self.http.get(url, headers={"Authorization": f"Bearer {api_key}"})
        except httpx.TimeoutException as e:
            raise ApiTimeoutError(f"{provider} model list timed out: {e!r}", provider) from e
        except httpx.HTTPError as e:
            logger.warning(f"Failed to list {provider} models: {e!r}")
            raise ApiError(f"{provider} model list failed: {e!r}", provider) from e

        if not response.is_success:
            raise ApiError(
                f"{provider} returned HTTP {response.status_code}",
                provider,
                status_code=response.status_code,
            )
        try:
            body = _ModelListResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ApiError(f"{provider} returned a malformed model list: {e}", provider) from e

        items = [ModelListItem(id=m.id, name=m.id, created=m.created) for m in body.data]
        self.cache[spec.name] = (items, self._clock() + self.ttl_seconds)
        logger.info(f"Cached {len(items)} {provider} model(s)")
        return items

    def clear(self) -> None:
        self.cache.clear()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()
