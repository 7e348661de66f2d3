"""Domain-specific exceptions for the model hub."""

from typing import Any


class ModelHubError(Exception):
    """Base exception for all model hub errors."""

    code = "UNKNOWN_001"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(ModelHubError):
    """Missing or invalid credentials, provider name or settings."""

    code = "CONFIG_001"


class ApiError(ModelHubError):
    """Upstream call failed: transport error, non-2xx status or bad body."""

    code = "API_001"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.status_code = status_code
        details: dict[str, Any] = {"provider": provider, "model": model}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)


class ApiTimeoutError(ApiError):
    """Upstream call exceeded its connect or read timeout."""

    code = "TIMEOUT_001"


class RateLimitedError(ModelHubError):
    """Admission denied for the caller's key."""

    code = "RATE_001"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__("Too many requests, please try again later", {"key": key})


class InvalidParamError(ModelHubError):
    """Caller-supplied request failed basic validation."""

    code = "PARAM_001"


class StorageError(ModelHubError):
    """Error related to log storage operations."""

    code = "STORAGE_001"
