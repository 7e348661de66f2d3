"""Model Hub - provider-agnostic chat and image generation over OpenAI-compatible APIs."""

__version__ = "1.0.0"

from .clients import ChatClient, LoggingChatClient, RateLimitedChatClient  # noqa: E402
from .hub import ModelHub  # noqa: E402
from .memory import MemoryChatClient  # noqa: E402
from .models import ChatMessage, ChatOptions, ChatRequest, ChatResponse, ImageOptions  # noqa: E402
from .providers import PROVIDERS, OpenAiCompatibleChatClient  # noqa: E402
from .rate_limiter import RateLimiter  # noqa: E402

__all__ = [
    "PROVIDERS",
    "ChatClient",
    "ChatMessage",
    "ChatOptions",
    "ChatRequest",
    "ChatResponse",
    "ImageOptions",
    "LoggingChatClient",
    "MemoryChatClient",
    "ModelHub",
    "OpenAiCompatibleChatClient",
    "RateLimitedChatClient",
    "RateLimiter",
]
