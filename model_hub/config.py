"""Configuration using pydantic-settings."""

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseModel):
    """Credentials and defaults for one chat provider."""

    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    organization_id: str | None = None
    project_id: str | None = None
    custom_headers: dict[str, str] | None = None


class ImageProviderSettings(BaseModel):
    """Credentials and defaults for one image provider."""

    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    size: str | None = None


class RateLimitConfig(BaseModel):
    """Snapshot of the limiter's global configuration."""

    enabled: bool = False
    max_per_minute: int = 60
    max_per_day: int = 1000


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="MODEL_HUB_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    host: str = "0.0.0.0"  # nosec B104 - Required for container deployment
    port: int = 8000
    log_level: str = "INFO"
    log_file: str | None = None

    default_provider: str = "siliconflow"

    openai: ProviderSettings = ProviderSettings()
    siliconflow: ProviderSettings = ProviderSettings()
    zhipu: ProviderSettings = ProviderSettings()

    image_openai: ImageProviderSettings = ImageProviderSettings()
    image_zhipu: ImageProviderSettings = ImageProviderSettings()
    image_siliconflow: ImageProviderSettings = ImageProviderSettings()

    http_timeout: float = 120.0
    connect_timeout: float = 10.0
    max_retries: int = 3

    # None keeps chat logs in memory
    log_database_url: str | None = None

    rate_limit_enabled: bool = False
    rate_limit_per_minute: int = 60
    rate_limit_per_day: int = 1000
    rate_limit_refresh_seconds: int = 60
    bucket_sweep_seconds: int = 3600

    def provider(self, name: str) -> ProviderSettings | None:
        """Chat settings for a provider name, or None if unknown."""
        value = getattr(self, name, None)
        return value if isinstance(value, ProviderSettings) else None

    def image_provider(self, name: str) -> ImageProviderSettings | None:
        """Image settings for a provider name, or None if unknown."""
        value = getattr(self, f"image_{name}", None)
        return value if isinstance(value, ImageProviderSettings) else None

    @property
    def rate_limit(self) -> RateLimitConfig:
        """Rate limit configuration derived from the flat settings."""
        return RateLimitConfig(
            enabled=self.rate_limit_enabled,
            max_per_minute=self.rate_limit_per_minute,
            max_per_day=self.rate_limit_per_day,
        )


settings = Settings()


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)."""
    return settings


def reload_settings() -> Settings:
    """Re-read the environment, replacing the shared settings instance."""
    global settings
    settings = Settings()
    return settings
