"""Normalized data models, independent of any vendor wire format."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

USER_MESSAGE_MAX_LENGTH = 500
RESPONSE_SUMMARY_MAX_LENGTH = 200
DEFAULT_MAX_HISTORY = 20


class Role(str, Enum):
    """Chat message role."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """A single chat message. Immutable once built."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content)


class GenerationParams(BaseModel):
    """Optional generation parameters. Unset means "not sent"."""

    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    stop: list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    seed: int | None = None
    user: str | None = None
    logit_bias: dict[str, int] | None = None
    n: int | None = None

    # SiliconFlow
    enable_thinking: bool | None = None
    thinking_budget: int | None = None
    min_p: float | None = None
    top_k: int | None = None
    repetition_penalty: float | None = None

    # Zhipu
    request_id: str | None = None
    web_search: bool | None = None
    tool_choice: str | None = None

    def generation_fields(self) -> dict[str, Any]:
        """Generation parameters that are set."""
        return {
            name: getattr(self, name)
            for name in GenerationParams.model_fields
            if getattr(self, name) is not None
        }


class StreamOptions(BaseModel):
    include_usage: bool = True


class ChatRequest(GenerationParams):
    """Normalized chat request."""

    messages: list[ChatMessage]
    model: str | None = None
    stream: bool | None = None
    stream_options: StreamOptions | None = None

    def to_payload(self) -> dict[str, Any]:
        """Vendor JSON body with every unset field omitted."""
        payload = self.model_dump(mode="json", exclude_none=True, exclude={"web_search"})
        if self.web_search:
            payload["tools"] = [{"type": "web_search", "web_search": {"enable": True}}]
        return payload


class Usage(BaseModel):
    """Token usage reported by the upstream."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return (self.prompt_tokens or 0) + (self.completion_tokens or 0)


class ChatResponse(BaseModel):
    """Normalized response: one per stream chunk, or one for a unary call."""

    content: str | None = None
    finish_reason: str | None = None
    usage: Usage | None = None
    model: str | None = None
    id: str | None = None


class ChatOptions(GenerationParams):
    """Configuration of one adapter instance."""

    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None
    completions_path: str | None = None
    timeout: float = 120.0
    connect_timeout: float = 10.0
    max_retries: int = 3
    custom_headers: dict[str, str] | None = None
    organization_id: str | None = None
    project_id: str | None = None


class ImageOptions(BaseModel):
    """Image generation options."""

    size: str | None = None
    quality: str | None = "standard"
    n: int = 1
    style: str | None = None
    watermark: bool = False


class CallType(str, Enum):
    CHAT = "chat"
    STREAM = "stream"
    IMAGE = "image"


def truncate(text: str | None, max_length: int) -> str | None:
    """Cut text to max_length characters, marking the cut with an ellipsis."""
    if text is None or len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def new_log_id() -> str:
    return "chatlog-" + uuid.uuid4().hex[:8]


class ChatLogRecord(BaseModel):
    """One record per chat, stream or image invocation."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=new_log_id)
    caller: str | None = None
    provider: str
    model: str | None = None
    user_message: str | None = None
    call_type: CallType
    request_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration_ms: int = 0
    success: bool = True
    error_message: str | None = None
    response_summary: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ChatLogStats(BaseModel):
    """Aggregate statistics over stored log records."""

    total_calls: int = 0
    success_count: int = 0
    fail_count: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_tokens: int = 0
    today_calls: int = 0
    today_tokens: int = 0

    def add(self, record: ChatLogRecord, today: Any) -> None:
        self.total_calls += 1
        if record.success:
            self.success_count += 1
        else:
            self.fail_count += 1
        self.total_prompt_tokens += record.prompt_tokens or 0
        self.total_completion_tokens += record.completion_tokens or 0
        self.total_tokens += record.total_tokens or 0
        if record.request_time.date() == today:
            self.today_calls += 1
            self.today_tokens += record.total_tokens or 0


Prompt = str | list[ChatMessage] | ChatRequest


def as_request(prompt: Prompt) -> ChatRequest:
    """Normalize a single user message, a message list or a request."""
    if isinstance(prompt, ChatRequest):
        return prompt
    if isinstance(prompt, str):
        return ChatRequest(messages=[ChatMessage.user(prompt)])
    return ChatRequest(messages=list(prompt))


def last_user_message(messages: list[ChatMessage]) -> str | None:
    """Content of the last message with the user role, if any."""
    for message in reversed(messages):
        if message.role == Role.USER:
            return message.content
    return None


class LogQuery(BaseModel):
    """Filters and pagination for listing log records. Pages are 1-based."""

    caller: str | None = None
    provider: str | None = None
    model: str | None = None
    success: bool | None = None
    page: int = Field(default=1, ge=1)
    size: int = Field(default=20, ge=1, le=200)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size


class LogPage(BaseModel):
    """One page of log records, newest first."""

    items: list[ChatLogRecord]
    total: int
    page: int
    size: int
