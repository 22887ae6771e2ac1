"""Runtime configuration for the proxy.

Every field can be overridden through an environment variable prefixed with
``NSE_PROXY_``, for example ``NSE_PROXY_WINDOW_SIZE=4`` or
``NSE_PROXY_SESSION_POLICY=reuse``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nse_proxy.errors import ConfigurationError

DEFAULT_BASE_URL = "https://www.nseindia.com"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


class SessionPolicy(str, Enum):
    """Whether upstream sessions are re-established for every batch."""

    PER_BATCH = "per_batch"
    REUSE = "reuse"


class ProxySettings(BaseSettings):
    """Configuration for the proxy core and its HTTP surface."""

    model_config = SettingsConfigDict(
        env_prefix="NSE_PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = DEFAULT_BASE_URL
    # Landing pages visited, in order, before the endpoint's own page.
    navigation_paths: tuple[str, ...] = ("/", "/market-data/live-equity-market")
    user_agent: str = DEFAULT_USER_AGENT

    window_size: int = Field(default=6, ge=1, le=8)
    processing_deadline: float = Field(default=45.0, gt=0)
    window_delay: float = Field(default=1.0, ge=0)
    item_timeout: float = Field(default=10.0, gt=0)
    navigation_timeout: float = Field(default=15.0, gt=0)

    session_max_attempts: int = Field(default=3, ge=1)
    session_retry_delay: float = Field(default=1.5, ge=0)
    session_require_credentials: bool = True
    session_policy: SessionPolicy = SessionPolicy.PER_BATCH
    session_ttl: float = Field(default=240.0, gt=0)
    embedded_token_names: tuple[str, ...] = ("nsit", "nseappid", "ak_bmsc", "bm_sv")

    cache_max_age: int = Field(default=30, ge=0)
    max_symbols_per_request: int = Field(default=100, ge=1)
    rate_limit: str = "120/minute"
    rate_limit_enabled: bool = True
    source_label: str = "NSE API via proxy"

    @model_validator(mode="after")
    def _check_timeouts(self) -> "ProxySettings":
        if self.item_timeout >= self.navigation_timeout:
            raise ValueError("item_timeout must be shorter than navigation_timeout")
        if not self.navigation_paths:
            raise ValueError("navigation_paths must contain at least one page")
        self.base_url = self.base_url.rstrip("/")
        return self


def load_settings(**overrides: object) -> ProxySettings:
    """Build settings from the environment plus ``overrides``.

    Invalid values surface as :class:`ConfigurationError` rather than a raw
    pydantic error.
    """

    try:
        return ProxySettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid proxy configuration",
            context={"errors": [err.get("msg") for err in exc.errors()]},
            cause=exc,
        ) from exc


settings = load_settings()


def get_settings() -> ProxySettings:
    return settings


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_USER_AGENT",
    "ProxySettings",
    "SessionPolicy",
    "get_settings",
    "load_settings",
    "settings",
]
