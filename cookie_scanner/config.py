"""
Service configuration.

Centralises all environment variable names and default values for
the categorization upstream, the browser and the HTTP server.

Uses ``pydantic_settings.BaseSettings`` for automatic environment
variable binding, type coercion, and validation.
"""

from __future__ import annotations

import pydantic
import pydantic_settings

from cookie_scanner.utils import circuit_breaker, logger, retry

log = logger.create_logger("Config")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class CategorizationSettings(pydantic_settings.BaseSettings):
    """Configuration for the cookie categorization upstream.

    Attributes:
        api_url: Endpoint receiving ``{"names": [...]}`` batches.
        cache_enabled: Whether results are cached by cookie name.
        cache_ttl_minutes: Lifetime of a cache entry.
        retry_max_attempts: Total upstream attempts per batch.
        timeout_seconds: Per-attempt request timeout.
        default_category: Fallback for unknown predicted categories.
    """

    api_url: str = pydantic.Field(default="", validation_alias="COOKIE_CATEGORIZATION_API_URL")
    cache_enabled: bool = pydantic.Field(default=True, validation_alias="COOKIE_CATEGORIZATION_CACHE_ENABLED")
    cache_ttl_minutes: int = pydantic.Field(default=60, validation_alias="COOKIE_CATEGORIZATION_CACHE_TTL_MINUTES")
    retry_max_attempts: int = pydantic.Field(default=3, validation_alias="COOKIE_CATEGORIZATION_RETRY_MAX_ATTEMPTS")
    retry_delay_ms: int = pydantic.Field(default=1000, validation_alias="COOKIE_CATEGORIZATION_RETRY_DELAY_MS")
    retry_multiplier: float = pydantic.Field(default=2.0, validation_alias="COOKIE_CATEGORIZATION_RETRY_MULTIPLIER")
    retry_max_delay_ms: int = pydantic.Field(default=10000, validation_alias="COOKIE_CATEGORIZATION_RETRY_MAX_DELAY_MS")
    timeout_seconds: float = pydantic.Field(default=15.0, validation_alias="COOKIE_CATEGORIZATION_TIMEOUT_SECONDS")
    breaker_failure_rate: float = pydantic.Field(default=60.0, validation_alias="COOKIE_CATEGORIZATION_BREAKER_FAILURE_RATE")
    breaker_window_size: int = pydantic.Field(default=10, validation_alias="COOKIE_CATEGORIZATION_BREAKER_WINDOW_SIZE")
    breaker_minimum_calls: int = pydantic.Field(default=5, validation_alias="COOKIE_CATEGORIZATION_BREAKER_MINIMUM_CALLS")
    breaker_open_seconds: float = pydantic.Field(default=20.0, validation_alias="COOKIE_CATEGORIZATION_BREAKER_OPEN_SECONDS")
    breaker_half_open_calls: int = pydantic.Field(default=3, validation_alias="COOKIE_CATEGORIZATION_BREAKER_HALF_OPEN_CALLS")
    default_category: str = pydantic.Field(default="Others", validation_alias="COOKIE_CATEGORIZATION_DEFAULT_CATEGORY")

    def validate_config(self) -> bool:
        """Check if the upstream endpoint is configured.

        Returns:
            True when ``api_url`` is set.
        """
        return bool(self.api_url.strip())

    def retry_policy(self) -> retry.RetryPolicy:
        return retry.RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay_ms=self.retry_delay_ms,
            multiplier=self.retry_multiplier,
            max_delay_ms=self.retry_max_delay_ms,
        )

    def breaker_config(self) -> circuit_breaker.CircuitBreakerConfig:
        return circuit_breaker.CircuitBreakerConfig(
            failure_rate_threshold=self.breaker_failure_rate,
            window_size=self.breaker_window_size,
            minimum_calls=self.breaker_minimum_calls,
            open_seconds=self.breaker_open_seconds,
            half_open_calls=self.breaker_half_open_calls,
        )


class BrowserSettings(pydantic_settings.BaseSettings):
    """Configuration for the headless browser used by each scan."""

    headless: bool = pydantic.Field(default=True, validation_alias="BROWSER_HEADLESS")
    viewport_width: int = pydantic.Field(default=1920, validation_alias="BROWSER_VIEWPORT_WIDTH")
    viewport_height: int = pydantic.Field(default=1080, validation_alias="BROWSER_VIEWPORT_HEIGHT")
    user_agent: str = pydantic.Field(default=DEFAULT_USER_AGENT, validation_alias="BROWSER_USER_AGENT")
    launch_timeout_ms: int = pydantic.Field(default=30000, validation_alias="BROWSER_LAUNCH_TIMEOUT_MS")
    default_timeout_ms: int = pydantic.Field(default=15000, validation_alias="BROWSER_DEFAULT_TIMEOUT_MS")
    navigation_timeout_ms: int = pydantic.Field(default=15000, validation_alias="BROWSER_NAVIGATION_TIMEOUT_MS")
    consent_timeout_ms: int = pydantic.Field(default=5000, validation_alias="BROWSER_CONSENT_TIMEOUT_MS")


class ServerSettings(pydantic_settings.BaseSettings):
    """Configuration for the HTTP server and persistence."""

    host: str = pydantic.Field(default="0.0.0.0", validation_alias="UVICORN_HOST")
    port: int = pydantic.Field(default=3001, validation_alias="UVICORN_PORT")
    environment: str = pydantic.Field(default="development", validation_alias="ENVIRONMENT")
    storage_dir: str = pydantic.Field(default="", validation_alias="SCAN_STORAGE_DIR")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def validate_categorization_config(settings: CategorizationSettings | None = None) -> str | None:
    """Check if the categorization upstream is configured.

    Returns:
        An error message string when misconfigured, or ``None`` if valid.
    """
    if (settings or CategorizationSettings()).validate_config():
        return None

    return (
        "Cookie categorization is not configured. Please set"
        " COOKIE_CATEGORIZATION_API_URL; until then every cookie"
        " is reported as uncategorized."
    )
