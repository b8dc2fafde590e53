"""
Enumeration types for the gateway sync system.

These enums provide type-safe constants for log levels, rejection reasons,
rule match fields and error codes used throughout the system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


class RejectionReason(Enum):
    """Why a feed line was not turned into a domain."""

    EMPTY_INPUT = "empty_input"
    COMMENT = "comment"
    IDNA_ERROR = "idna_error"
    INVALID_DOMAIN = "invalid_domain"


class MatchField(Enum):
    """Gateway traffic fields a rule expression can match domains against."""

    DNS_DOMAINS = "dns.domains"
    SNI_DOMAINS = "net.sni.domains"


class RuleFilter(Enum):
    """Gateway rule filter kinds."""

    DNS = "dns"
    L4 = "l4"


class FeedErrorCode(Enum):
    """Error codes for feed downloads."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    HTTP_ERROR = "http_error"


class GatewayErrorCode(Enum):
    """Error codes for gateway API operations."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    RATE_LIMIT_EXHAUSTED = "rate_limit_exhausted"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    API_ERROR = "api_error"
    PARSE_ERROR = "parse_error"
    NOT_FOUND = "not_found"


class ConfigErrorCode(Enum):
    """Error codes for configuration problems."""

    MISSING_CREDENTIALS = "missing_credentials"
    MISSING_FEEDS = "missing_feeds"
    INVALID_VALUE = "invalid_value"
    INVALID_FILE = "invalid_file"


class NotificationErrorCode(Enum):
    """Error codes for notification delivery."""

    SEND_FAILED = "send_failed"
    REJECTED = "rejected"
