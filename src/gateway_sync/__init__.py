"""
Gateway Blocklist Sync - DNS blocklists for Cloudflare Zero Trust Gateway.

This package downloads public allow/block feeds, reconciles them into a
minimal blocklist that respects domain hierarchies and account item limits,
and replaces the managed gateway lists and blocking rules with the result.
"""

__version__ = "0.1.0"
__author__ = "Gateway Blocklist Sync Team"

from gateway_sync.exceptions import (
    GatewaySyncError,
    ConfigurationError,
    NetworkError,
    FeedError,
    GatewayError,
    RateLimitError,
    NotificationError,
)
from gateway_sync.enums import (
    LogLevel,
    RejectionReason,
    MatchField,
    RuleFilter,
    FeedErrorCode,
    GatewayErrorCode,
    ConfigErrorCode,
    NotificationErrorCode,
)
from gateway_sync.config import (
    RateLimitRule,
    RateLimitConfig,
    RetryConfig,
    FeedConfig,
    GatewayConfig,
    SyncConfig,
    TelegramConfig,
    WebhookConfig,
    NotificationConfig,
    LoggingConfig,
    SystemConfig,
)
from gateway_sync.models import (
    ReconciliationStats,
    ReconciliationResult,
    ListChunk,
    RemoteList,
    RemoteRule,
    RuleDefinition,
    SyncResult,
)
from gateway_sync.audit_logger import (
    AuditLogger,
    LogEntry,
)
from gateway_sync.domain_normalizer import (
    DomainNormalizer,
    NormalizationResult,
    FeedParseResult,
    parse_feed,
)
from gateway_sync.hierarchy_index import (
    HierarchyIndex,
    domain_ancestors,
)
from gateway_sync.reconciler import (
    Reconciler,
    reconcile,
)
from gateway_sync.partitioner import (
    ListPartitioner,
    chunk_name,
)
from gateway_sync.rule_builder import (
    RuleExpressionBuilder,
    build_expression,
)
from gateway_sync.rate_limiter import (
    RateLimiter,
    RateLimitStatus,
)
from gateway_sync.retry_manager import (
    RetryManager,
    RetryResult,
)
from gateway_sync.feed_source import (
    FeedSource,
    HTTPFeedSource,
)
from gateway_sync.gateway_client import (
    GatewayClient,
    CloudflareGatewayClient,
)
from gateway_sync.notifications import (
    NotificationPayload,
    NotificationResult,
    NotificationChannel,
    TelegramChannel,
    WebhookChannel,
    NotificationRouter,
    format_success_message,
    format_failure_message,
)
from gateway_sync.orchestrator import (
    SyncOrchestrator,
)
from gateway_sync.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_env,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "GatewaySyncError",
    "ConfigurationError",
    "NetworkError",
    "FeedError",
    "GatewayError",
    "RateLimitError",
    "NotificationError",
    # Enums
    "LogLevel",
    "RejectionReason",
    "MatchField",
    "RuleFilter",
    "FeedErrorCode",
    "GatewayErrorCode",
    "ConfigErrorCode",
    "NotificationErrorCode",
    # Configuration
    "RateLimitRule",
    "RateLimitConfig",
    "RetryConfig",
    "FeedConfig",
    "GatewayConfig",
    "SyncConfig",
    "TelegramConfig",
    "WebhookConfig",
    "NotificationConfig",
    "LoggingConfig",
    "SystemConfig",
    # Models
    "ReconciliationStats",
    "ReconciliationResult",
    "ListChunk",
    "RemoteList",
    "RemoteRule",
    "RuleDefinition",
    "SyncResult",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Domain Normalizer
    "DomainNormalizer",
    "NormalizationResult",
    "FeedParseResult",
    "parse_feed",
    # Hierarchy Index
    "HierarchyIndex",
    "domain_ancestors",
    # Reconciler
    "Reconciler",
    "reconcile",
    # Partitioner
    "ListPartitioner",
    "chunk_name",
    # Rule Builder
    "RuleExpressionBuilder",
    "build_expression",
    # Rate Limiter
    "RateLimiter",
    "RateLimitStatus",
    # Retry Manager
    "RetryManager",
    "RetryResult",
    # Remote collaborators
    "FeedSource",
    "HTTPFeedSource",
    "GatewayClient",
    "CloudflareGatewayClient",
    # Notifications
    "NotificationPayload",
    "NotificationResult",
    "NotificationChannel",
    "TelegramChannel",
    "WebhookChannel",
    "NotificationRouter",
    "format_success_message",
    "format_failure_message",
    # Orchestrator
    "SyncOrchestrator",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_env",
    "load_config_from_file",
    "save_config_to_file",
]
