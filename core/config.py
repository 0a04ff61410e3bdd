"""
Service configuration.

All values come from environment variables (optionally a .env file).
API keys are never hardcoded.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


DEFAULT_USER_AGENT = "AgroMarketAggregator/1.0 (+https://github.com/agro-market)"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number", config_key=name, cause=e)


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


def parse_feed_list(raw: Optional[str]) -> list[tuple[str, str]]:
    """
    Parse ``name|url;name|url`` into (name, url) pairs.

    Malformed fragments are ignored.
    """
    feeds: list[tuple[str, str]] = []
    if not raw:
        return feeds
    for chunk in raw.split(";"):
        name, sep, url = chunk.strip().partition("|")
        if sep and name.strip() and url.strip().startswith("http"):
            feeds.append((name.strip(), url.strip()))
    return feeds


@dataclass(frozen=True)
class Settings:
    """Runtime settings of the market data service."""

    http_timeout_seconds: float = 10.0
    """Per-source request timeout."""

    aggregation_timeout_seconds: float = 25.0
    """Caller-level deadline for one aggregation pass."""

    user_agent: str = DEFAULT_USER_AGENT

    cache_sweep_interval_seconds: float = 300.0

    database_url: str = "sqlite:///./market.db"

    anthropic_api_key: Optional[str] = None
    report_model: str = "sonnet"

    extra_news_feeds: list[tuple[str, str]] = field(default_factory=list)

    log_level: str = "INFO"
    log_format: str = "json"

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from the environment."""
        if dotenv:
            load_dotenv()
        settings = cls(
            http_timeout_seconds=_env_float("MARKET_HTTP_TIMEOUT", 10.0),
            aggregation_timeout_seconds=_env_float("MARKET_AGGREGATION_TIMEOUT", 25.0),
            user_agent=os.environ.get("MARKET_USER_AGENT", DEFAULT_USER_AGENT),
            cache_sweep_interval_seconds=_env_float("MARKET_CACHE_SWEEP_INTERVAL", 300.0),
            database_url=os.environ.get("MARKET_DATABASE_URL", "sqlite:///./market.db"),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
            report_model=os.environ.get("MARKET_REPORT_MODEL", "sonnet"),
            extra_news_feeds=parse_feed_list(os.environ.get("MARKET_NEWS_FEEDS")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "json"),
            api_host=os.environ.get("API_HOST", "0.0.0.0"),
            api_port=_env_int("API_PORT", 8000),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.http_timeout_seconds <= 0:
            raise ConfigurationError("HTTP timeout must be positive", config_key="MARKET_HTTP_TIMEOUT")
        if self.aggregation_timeout_seconds <= 0:
            raise ConfigurationError(
                "Aggregation timeout must be positive", config_key="MARKET_AGGREGATION_TIMEOUT"
            )
        if self.cache_sweep_interval_seconds <= 0:
            raise ConfigurationError(
                "Cache sweep interval must be positive", config_key="MARKET_CACHE_SWEEP_INTERVAL"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "http_timeout_seconds": self.http_timeout_seconds,
            "aggregation_timeout_seconds": self.aggregation_timeout_seconds,
            "user_agent": self.user_agent,
            "cache_sweep_interval_seconds": self.cache_sweep_interval_seconds,
            "database_url": self.database_url,
            "anthropic_api_key": "***" if self.anthropic_api_key else None,
            "report_model": self.report_model,
            "extra_news_feeds": [name for name, _ in self.extra_news_feeds],
            "log_level": self.log_level,
            "log_format": self.log_format,
        }
