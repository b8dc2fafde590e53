"""
Configuration dataclasses for the gateway sync system.

This module defines all configuration structures used throughout the system,
including feed sources, gateway credentials, reconciliation limits, rate
limiting, retry logic, notifications, and logging configuration.
"""

from dataclasses import dataclass, field
from typing import Optional


DEFAULT_API_HOST = "https://api.cloudflare.com/client/v4"

# Items per gateway list object
DEFAULT_CHUNK_SIZE = 1000
# Total items across all lists (300 lists of 1000 items on the free plan)
DEFAULT_CEILING = 300_000

DEFAULT_LIST_PREFIX = "CGPS List"
DEFAULT_RULE_PREFIX = "CGPS Filter Lists"

RECOMMENDED_ALLOWLIST_URLS: list[str] = []
RECOMMENDED_BLOCKLIST_URLS = [
    "https://raw.githubusercontent.com/hagezi/dns-blocklists/main/domains/pro.txt",
]


@dataclass
class RateLimitRule:
    """A single rate limit rule."""

    max_requests: int
    window_seconds: float
    min_delay_seconds: float = 0.0


@dataclass
class RateLimitConfig:
    """Rate limiting configuration for gateway API access."""

    per_endpoint: dict[str, RateLimitRule] = field(default_factory=dict)
    global_limit: Optional[RateLimitRule] = None


@dataclass
class RetryConfig:
    """Retry behavior configuration."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    retryable_errors: list[str] = field(
        default_factory=lambda: ["timeout", "server_error", "rate_limited", "network_error"]
    )


@dataclass
class FeedConfig:
    """Allow/block feed sources."""

    allowlist_urls: list[str] = field(default_factory=list)
    blocklist_urls: list[str] = field(default_factory=list)
    timeout_seconds: float = 30.0


@dataclass
class GatewayConfig:
    """Remote gateway API configuration."""

    account_id: str
    api_token: str
    api_host: str = DEFAULT_API_HOST
    timeout_seconds: float = 30.0
    block_page_enabled: bool = False
    rate_limit_cooldown_seconds: float = 120.0
    page_size: int = 100


@dataclass
class SyncConfig:
    """Reconciliation limits and remote naming namespace."""

    ceiling: Optional[int] = DEFAULT_CEILING
    chunk_size: int = DEFAULT_CHUNK_SIZE
    enable_sni: bool = False
    list_prefix: str = DEFAULT_LIST_PREFIX
    rule_prefix: str = DEFAULT_RULE_PREFIX


@dataclass
class TelegramConfig:
    """Telegram notification channel configuration."""

    bot_token: str
    chat_id: str


@dataclass
class WebhookConfig:
    """Generic webhook notification channel configuration."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class NotificationConfig:
    """Notification channels configuration."""

    telegram: Optional[TelegramConfig] = None
    webhook: Optional[WebhookConfig] = None


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    gateway: GatewayConfig
    feeds: FeedConfig = field(default_factory=FeedConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    simulation_mode: bool = False
