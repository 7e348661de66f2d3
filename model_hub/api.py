"""FastAPI application and route handlers."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field, model_validator

from . import __version__
from .catalog import ModelListItem
from .chat_log import ChatLogService
from .config import get_settings
from .exceptions import (
    ApiError,
    ApiTimeoutError,
    ConfigurationError,
    InvalidParamError,
    ModelHubError,
    RateLimitedError,
)
from .hub import ModelHub
from .logging_setup import configure_logging
from .middleware import add_request_id, client_ip
from .models import ChatLogStats, ChatMessage, ImageOptions, LogPage, LogQuery
from .rate_limiter import RateLimiter
from .storage import create_log_sink
from .streaming import DONE_SIGNAL
from .tasks import BackgroundJobs, RateLimitConfigRefresher

_hub: ModelHub | None = None
_limiter: RateLimiter | None = None


class ChatBody(BaseModel):
    """Chat request: a single message or a full message list."""

    provider: str | None = None
    message: str | None = Field(default=None, min_length=1, max_length=10000)
    messages: list[ChatMessage] | None = Field(default=None, min_length=1)
    caller: str | None = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def check_prompt(self) -> "ChatBody":
        if self.message is None and self.messages is None:
            raise ValueError("Either 'message' or 'messages' is required")
        return self

    @property
    def prompt(self) -> str | list[ChatMessage]:
        return self.messages if self.messages is not None else self.message  # type: ignore[return-value]


class ChatReply(BaseModel):
    content: str
    provider: str


class ImageBody(BaseModel):
    provider: str = "openai"
    prompt: str = Field(..., min_length=1, max_length=4000)
    options: ImageOptions | None = None
    caller: str | None = Field(default=None, max_length=100)


class ImageReply(BaseModel):
    urls: list[str]
    provider: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global _hub, _limiter
    configure_logging()
    settings = get_settings()

    sink = create_log_sink()
    await sink.startup()

    _limiter = RateLimiter(settings.rate_limit)
    _hub = ModelHub(ChatLogService(sink), limiter=_limiter)

    jobs = BackgroundJobs()
    jobs.start(
        "rate-limit-refresh",
        settings.rate_limit_refresh_seconds,
        RateLimitConfigRefresher(_limiter).refresh,
    )
    jobs.start("bucket-sweep", settings.bucket_sweep_seconds, _limiter.cleanup_expired_buckets)

    logger.info("Application started successfully")

    yield

    await jobs.stop()
    await _hub.aclose()
    await sink.shutdown()
    _hub = None
    _limiter = None
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Model Hub",
    version=__version__,
    description="Provider-agnostic chat and image generation over OpenAI-compatible APIs",
    lifespan=lifespan,
)

app.middleware("http")(add_request_id)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle validation errors with clean messages."""
    error_messages = []

    for error in exc.errors():
        field = error["loc"][-1] if error["loc"] else "field"
        message = error.get("msg", f"Invalid {field}")

        match error["type"]:
            case "missing":
                message = f"Required field '{field}' is missing"
            case "json_invalid":
                message = "Invalid JSON format"

        error_messages.append(message)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation failed",
            "message": "; ".join(error_messages),
            "details": error_messages,
        },
    )


app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]


def error_status(exc: ModelHubError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, ConfigurationError | InvalidParamError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, RateLimitedError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(exc, ApiTimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(exc, ApiError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(ModelHubError)
async def model_hub_exception_handler(request: Request, exc: ModelHubError) -> JSONResponse:
    """Handle domain-specific errors."""
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"Model hub error: {exc}")
    else:
        logger.warning(f"Model hub error: {exc}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_hub() -> ModelHub:
    """Get model hub singleton."""
    if _hub is None:
        raise RuntimeError("Service not initialized")
    return _hub


def get_limiter() -> RateLimiter:
    """Get rate limiter singleton."""
    if _limiter is None:
        raise RuntimeError("Service not initialized")
    return _limiter


def enforce_rate_limit(
    request: Request, limiter: Annotated[RateLimiter, Depends(get_limiter)]
) -> str:
    """Admit the request by client IP, or fail with 429."""
    key = client_ip(request)
    if not limiter.allow(key):
        raise RateLimitedError(key)
    return key


HubDep = Annotated[ModelHub, Depends(get_hub)]
RateLimitDep = Annotated[str, Depends(enforce_rate_limit)]


def sse_event(data: str, event: str | None = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {data}\n\n"


@app.post("/chat", tags=["chat"])
async def chat_endpoint(body: ChatBody, hub: HubDep, _: RateLimitDep) -> ChatReply:
    """Send a message and wait for the full reply."""
    provider = body.provider or get_settings().default_provider
    content = await hub.chat(provider, body.prompt, caller=body.caller)
    return ChatReply(content=content, provider=provider)


@app.post("/chat/stream", tags=["chat"])
async def chat_stream_endpoint(body: ChatBody, hub: HubDep, _: RateLimitDep) -> StreamingResponse:
    """Stream the reply as Server-Sent Events, ending with ``[DONE]``."""
    provider = body.provider or get_settings().default_provider
    client = hub.client(provider, caller=body.caller)

    async def events() -> AsyncIterator[str]:
        try:
            async for chunk in client.chat_stream(body.prompt):
                if chunk.content:
                    yield sse_event(json.dumps({"content": chunk.content}, ensure_ascii=False))
        except ModelHubError as e:
            logger.error(f"Stream from {provider} failed: {e}")
            yield sse_event(json.dumps(e.to_dict(), ensure_ascii=False), event="error")
            return
        yield sse_event(DONE_SIGNAL)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/images/generate", tags=["images"])
async def image_endpoint(body: ImageBody, hub: HubDep, _: RateLimitDep) -> ImageReply:
    """Generate images and return their URLs."""
    urls = await hub.generate_image(body.provider, body.prompt, body.options, caller=body.caller)
    return ImageReply(urls=urls, provider=body.provider)


@app.get("/models/{provider}", tags=["models"])
async def models_endpoint(provider: str, hub: HubDep) -> list[ModelListItem]:
    """List the models a provider serves (cached for a day)."""
    return await hub.list_models(provider)


@app.get("/logs", tags=["logs"])
async def logs_endpoint(
    hub: HubDep,
    caller: str | None = None,
    provider: str | None = None,
    model: str | None = None,
    success: bool | None = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
) -> LogPage:
    """List call logs, newest first."""
    query = LogQuery(
        caller=caller, provider=provider, model=model, success=success, page=page, size=size
    )
    return await hub.log_service.list_logs(query)


@app.get("/logs/stats", tags=["logs"])
async def log_stats_endpoint(hub: HubDep) -> ChatLogStats:
    """Aggregate call statistics."""
    return await hub.log_service.stats()


@app.get("/health", tags=["health"])
async def health_endpoint(
    response: Response,
    hub: HubDep,
    detailed: bool = Query(False, description="Include rate limit configuration"),
) -> dict[str, Any]:
    """Check health status of all components."""
    services = {"log_sink": await hub.log_service.sink.health_check()}
    all_healthy = all(services.values())

    if not all_healthy:
        response.status_code = 503

    result: dict[str, Any] = {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": services,
    }

    if detailed:
        result["version"] = __version__
        result["default_provider"] = get_settings().default_provider
        if hub.limiter is not None:
            result["rate_limit"] = hub.limiter.config.model_dump()

    return result


@app.get("/", tags=["health"])
async def root_endpoint() -> dict[str, str]:
    """API information endpoint."""
    return {
        "name": "Model Hub",
        "version": __version__,
        "status": "running",
        "docs": "/docs",
    }


app.openapi_tags = [
    {"name": "chat", "description": "Chat operations"},
    {"name": "images", "description": "Image generation"},
    {"name": "models", "description": "Provider model catalogs"},
    {"name": "logs", "description": "Call logs and statistics"},
    {"name": "health", "description": "Health checks"},
]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    return app
