"""Configuration management for square_sync.

Two layers:
    Settings       process-level settings (database, host, logging), cached.
    GatewayConfig  gateway credentials. Reloaded from the environment on every
                   gateway call so a live/sandbox switch takes effect without
                   restarting the process.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from square_sync.errors import ConfigurationError

SANDBOX_BASE_URL = "https://connect.squareupsandbox.com"
LIVE_BASE_URL = "https://connect.squareup.com"
DEFAULT_API_VERSION = "2025-01-15"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    host: str
    port: int
    debug: bool
    log_level: str

    @property
    def HOST(self) -> str:
        """Alias for host."""
        return self.host

    @property
    def PORT(self) -> int:
        """Alias for port."""
        return self.port

    @property
    def DEBUG(self) -> bool:
        """Alias for debug."""
        return self.debug

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./square_sync.db"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=_env_bool("DEBUG"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()


@dataclass(frozen=True)
class GatewayConfig:
    """
    Gateway credentials and endpoints.

    Attributes:
        is_test: Use the sandbox environment and the sandbox credentials.
        access_token: Bearer token for the active mode.
        location_id: Location that owns payments and subscriptions.
        webhook_signature_key: Shared secret for webhook HMAC verification.
        notification_url: Exact URL the gateway posts webhooks to. It is part
            of the signed message.
        api_base_url: Explicit base URL override. Empty = derive from mode.
        api_version: Value of the Square-Version header.
        plan_prefix: Prefix for catalog plan names ("CiviCRM Contribute").
        connect_timeout: Seconds to establish a connection.
        total_timeout: Seconds for the whole request.
    """

    is_test: bool = True
    access_token: str = ""
    location_id: str = ""
    webhook_signature_key: str = ""
    notification_url: str = ""
    api_base_url: str = ""
    api_version: str = DEFAULT_API_VERSION
    plan_prefix: str = "CiviCRM"
    connect_timeout: float = 10.0
    total_timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.connect_timeout <= 0 or self.total_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.connect_timeout > self.total_timeout:
            raise ValueError("connect_timeout cannot exceed total_timeout")

    @property
    def mode_label(self) -> str:
        return "SANDBOX" if self.is_test else "PRODUCTION"

    @property
    def base_url(self) -> str:
        if self.api_base_url:
            return self.api_base_url.rstrip("/")
        return SANDBOX_BASE_URL if self.is_test else LIVE_BASE_URL

    def require_access_token(self) -> str:
        if not self.access_token:
            which = "sandbox" if self.is_test else "live"
            raise ConfigurationError(f"Square {which} access token is not configured.")
        return self.access_token

    def require_location_id(self) -> str:
        if not self.location_id:
            raise ConfigurationError("Square location ID is not configured.")
        return self.location_id

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Load gateway configuration for the currently selected mode.

        Sandbox mode falls back to the live location id when no sandbox
        location is configured.
        """
        load_dotenv()

        is_test = _env_bool("SQUARE_IS_TEST", "true")
        if is_test:
            token = os.getenv("SQUARE_TEST_ACCESS_TOKEN", "")
            location = os.getenv("SQUARE_TEST_LOCATION_ID") or os.getenv("SQUARE_LOCATION_ID", "")
            secret = os.getenv("SQUARE_TEST_WEBHOOK_SIGNATURE_KEY", "")
        else:
            token = os.getenv("SQUARE_ACCESS_TOKEN", "")
            location = os.getenv("SQUARE_LOCATION_ID", "")
            secret = os.getenv("SQUARE_WEBHOOK_SIGNATURE_KEY", "")

        return cls(
            is_test=is_test,
            access_token=token,
            location_id=location,
            webhook_signature_key=secret,
            notification_url=os.getenv("SQUARE_NOTIFICATION_URL", ""),
            api_base_url=os.getenv("SQUARE_API_BASE_URL", ""),
            api_version=os.getenv("SQUARE_API_VERSION", DEFAULT_API_VERSION),
            plan_prefix=os.getenv("SQUARE_PLAN_PREFIX", "CiviCRM"),
        )


def validate_production_config(config: GatewayConfig) -> list[str]:
    """
    Validate that a gateway configuration is safe for production.

    Returns a list of warnings/errors. Empty list = safe.
    """
    issues: list[str] = []

    if config.is_test:
        issues.append("WARNING: Sandbox mode is enabled.")
    if not config.access_token:
        issues.append("CRITICAL: No access token configured.")
    if not config.location_id:
        issues.append("CRITICAL: No location ID configured.")
    if not config.webhook_signature_key:
        issues.append("CRITICAL: No webhook signature key. All webhooks will be rejected.")
    if not config.notification_url:
        issues.append("WARNING: No notification URL. Webhook signatures cannot match.")
    elif not config.notification_url.startswith("https://"):
        issues.append("WARNING: Notification URL is not HTTPS.")

    return issues
