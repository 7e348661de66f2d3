"""Shared test fixtures."""

import os
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio

# Set test environment
os.environ["MODEL_HUB_LOG_LEVEL"] = "ERROR"  # Reduce log noise

from model_hub.chat_log import ChatLogService  # noqa: E402
from model_hub.config import ImageProviderSettings, ProviderSettings, Settings  # noqa: E402
from model_hub.hub import ModelHub  # noqa: E402
from model_hub.storage import InMemoryChatLogSink  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def log_sink() -> InMemoryChatLogSink:
    return InMemoryChatLogSink()


@pytest.fixture
def log_service(log_sink: InMemoryChatLogSink) -> ChatLogService:
    return ChatLogService(log_sink)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with every provider configured and no retry back-off."""
    return Settings(
        _env_file=None,
        openai=ProviderSettings(api_key="sk-openai"),
        siliconflow=ProviderSettings(api_key="sk-siliconflow"),
        zhipu=ProviderSettings(api_key="sk-zhipu"),
        image_openai=ImageProviderSettings(api_key="sk-image"),
        image_siliconflow=ImageProviderSettings(api_key="sk-image"),
        image_zhipu=ImageProviderSettings(api_key="sk-image"),
        max_retries=1,
    )


@pytest.fixture
def captured() -> list[httpx.Request]:
    """Requests seen by the mock transport."""
    return []


@pytest_asyncio.fixture
async def make_http_client(captured: list[httpx.Request]):
    """Build an httpx client whose transport records requests and calls handler."""
    clients: list[httpx.AsyncClient] = []

    def factory(handler: Handler) -> httpx.AsyncClient:
        def record(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(record))
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def make_hub(
    make_http_client, log_service: ChatLogService, test_settings: Settings
) -> AsyncGenerator[Callable[..., ModelHub], None]:
    """Build a ModelHub over a mock upstream."""
    hubs: list[ModelHub] = []

    def factory(handler: Handler, **kwargs) -> ModelHub:
        kwargs.setdefault("settings_source", lambda: test_settings)
        hub = ModelHub(log_service, http_client=make_http_client(handler), **kwargs)
        hubs.append(hub)
        return hub

    yield factory

    for hub in hubs:
        await hub.aclose()
