"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports two modes:
    - DEVELOPMENT: In-memory cache store and simulated POS API (no credentials needed)
    - PRODUCTION: Redis cache store and the real Toast API

The ENV_MODE variable controls which services are instantiated throughout
the application, enabling seamless switching between local testing and
production deployment.

Usage:
    from ordersync.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # Use mock services
    else:
        # Use real APIs

Author: Your Name
Version: 2.0.0
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with mock services
        PRODUCTION: Live environment with real API integrations
        STAGING: Pre-production testing against a sandbox restaurant
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Sensitive values (client secrets) should NEVER be committed to version control.

    Attributes:
        env_mode: Current environment (development/production/staging)
        debug: Enable verbose logging and error details

        # Upstream
        toast_api_base: Base URL of the Toast API
        toast_auth_url: Machine-client authentication endpoint
        toast_client_id / toast_client_secret: Machine-client credentials
        toast_restaurant_guid: Sent as Toast-Restaurant-External-ID on every call

        # Pacing / retries
        *_min_gap_ms: Minimum spacing between calls per pacing scope
        upstream_retries: Retry attempts for 429/5xx/transport failures

        # Sync engine
        recent_index_limit: Cap of the "recent orders" index
        lookback_ladder_minutes: Fallback windows tried when too few orders
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Toast Order Sync",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8001,
        description="API server port"
    )

    # ==========================================================================
    # REDIS / CELERY
    # ==========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (cache store and Celery broker)"
    )
    kv_key_prefix: str = Field(
        default="ordersync:",
        description="Prefix applied to every key written to Redis"
    )

    # ==========================================================================
    # TOAST POS API
    # ==========================================================================

    toast_api_base: str = Field(
        default="https://ws-api.toasttab.com",
        description="Toast API base URL"
    )
    toast_auth_url: str = Field(
        default="https://ws-api.toasttab.com/authentication/v1/authentication/login",
        description="Toast machine-client login URL"
    )
    toast_client_id: Optional[str] = Field(
        default=None,
        description="Toast machine client ID"
    )
    toast_client_secret: Optional[str] = Field(
        default=None,
        description="Toast machine client secret"
    )
    toast_restaurant_guid: Optional[str] = Field(
        default=None,
        description="Restaurant GUID (Toast-Restaurant-External-ID header)"
    )

    # ==========================================================================
    # PACING / RETRIES
    # ==========================================================================

    global_min_gap_ms: int = Field(
        default=600,
        description="Minimum gap between calls on the global scope"
    )
    orders_min_gap_ms: int = Field(
        default=600,
        description="Minimum gap between calls on the orders scope"
    )
    menu_min_gap_ms: int = Field(
        default=1000,
        description="Minimum gap between calls on the menu scope (1 rps)"
    )
    upstream_retries: int = Field(
        default=3,
        description="Retries for retry-eligible upstream failures"
    )
    backoff_base_ms: int = Field(
        default=500,
        description="Base delay for exponential backoff"
    )
    max_backoff_ms: int = Field(
        default=8000,
        description="Upper bound for a single backoff delay"
    )
    http_timeout_seconds: float = Field(
        default=20.0,
        description="Per-request timeout for upstream calls"
    )

    # ==========================================================================
    # TOKEN MANAGEMENT
    # ==========================================================================

    token_lock_ttl_seconds: int = Field(
        default=30,
        description="TTL of the advisory token refresh lock"
    )
    token_lock_backoff_ms: int = Field(
        default=500,
        description="Delay before re-checking the cache when the lock is held"
    )

    # ==========================================================================
    # ORDER CACHE / COLLECTOR
    # ==========================================================================

    recent_index_limit: int = Field(
        default=300,
        description="Maximum number of GUIDs kept in the recent index"
    )
    order_cache_ttl_seconds: int = Field(
        default=3 * 24 * 60 * 60,
        description="TTL for cached order documents and date indices"
    )
    orders_page_size: int = Field(
        default=100,
        description="Default page size for ordersBulk"
    )
    orders_max_pages: int = Field(
        default=200,
        description="Hard cap on pages fetched per window"
    )
    default_orders_limit: int = Field(
        default=200,
        description="Default number of orders returned by the collector"
    )
    lookback_ladder_minutes: str = Field(
        default="60,240,480,1440,2880,4320,10080",
        description="Comma-separated fallback lookback windows in minutes"
    )
    max_lookback_minutes: int = Field(
        default=7 * 24 * 60,
        description="Ceiling for fallback lookback windows"
    )
    restaurant_timezone: str = Field(
        default="UTC",
        description="IANA timezone used for the default 'today' window"
    )

    # ==========================================================================
    # EXPANSION PIPELINE
    # ==========================================================================

    pipeline_time_budget_ms: int = Field(
        default=10_000,
        description="Wall-clock budget for building expanded orders"
    )
    expanded_default_limit: int = Field(
        default=20,
        description="Default number of expanded orders"
    )
    expanded_max_limit: int = Field(
        default=500,
        description="Maximum number of expanded orders per request"
    )

    # ==========================================================================
    # MENU CACHE
    # ==========================================================================

    menu_body_ttl_seconds: int = Field(
        default=6 * 60 * 60,
        description="TTL for the cached published menu body"
    )

    # ==========================================================================
    # BACKGROUND SYNC
    # ==========================================================================

    sync_interval_seconds: int = Field(
        default=60,
        description="Interval of the periodic incremental sync task"
    )
    sync_limit: int = Field(
        default=200,
        description="Orders collected per background sync run"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("lookback_ladder_minutes")
    @classmethod
    def validate_lookback_ladder(cls, v: str) -> str:
        """Ensure the ladder is a list of positive integers."""
        for part in v.split(","):
            part = part.strip()
            if not part:
                continue
            if not part.isdigit() or int(part) <= 0:
                raise ValueError(f"Invalid lookback step: {part!r}")
        return v

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def use_real_services(self) -> bool:
        """Check if real external services should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def lookback_ladder(self) -> list[int]:
        """Get lookback ladder steps as a list of minutes."""
        return [int(p.strip()) for p in self.lookback_ladder_minutes.split(",") if p.strip()]

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.toast_client_id:
                missing.append("TOAST_CLIENT_ID")
            if not self.toast_client_secret:
                missing.append("TOAST_CLIENT_SECRET")
            if not self.toast_restaurant_guid:
                missing.append("TOAST_RESTAURANT_GUID")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are loaded only once,
    improving performance and ensuring consistency across
    the application lifecycle.

    Returns:
        Settings: Configured application settings

    Example:
        >>> settings = get_settings()
        >>> print(settings.env_mode)
        EnvironmentMode.DEVELOPMENT
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    # Set level based on debug mode
    if settings.debug:
        level = logging.DEBUG

    # Configure format
    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    # Configure root logger
    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.WARNING)

    return logging.getLogger("ordersync")
