"""
Feed line normalization module.

Turns one raw line of a hosts-style or adblock-style feed into a canonical
domain, or rejects it. Normalization never raises: malformed lines are
reported through the result object and simply do not contribute a domain.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

import idna

from .enums import RejectionReason


COMMENT_PREFIXES = ("#", "//", "!", "/*", "*/")

ALLOWLIST_EXCEPTION_PREFIX = "@@||"

# Hosts-file sink address followed by whitespace
HOSTS_IP_PREFIX_PATTERN = re.compile(r"^(?:0\.0\.0\.0|127\.0\.0\.1|::1|::)\s+")

# Labels of 1-63 chars, optional punycode prefix, alphabetic TLD of 2-63 chars
DOMAIN_PATTERN = re.compile(
    r"^((?=[a-z0-9-]{1,63}\.)(xn--)?[a-z0-9]+(-[a-z0-9]+)*\.)+[a-z]{2,63}$"
)


@dataclass
class NormalizationResult:
    """Result of normalizing a single feed line."""

    valid: bool
    domain: Optional[str]
    rejection: Optional[RejectionReason] = None


@dataclass
class FeedParseResult:
    """All domains found in one feed plus a tally of rejected lines."""

    domains: list[str]
    lines: int = 0
    rejected: Counter = field(default_factory=Counter)

    @property
    def rejected_count(self) -> int:
        return sum(self.rejected.values())


def is_comment(line: str) -> bool:
    """Check whether a trimmed feed line is a comment."""
    return line.startswith(COMMENT_PREFIXES)


def is_valid_domain(value: str) -> bool:
    """Check a string against the canonical domain grammar."""
    return bool(DOMAIN_PATTERN.match(value))


class DomainNormalizer:
    """
    Normalizes feed lines into canonical domains.

    Handles:
    - Comment and empty line rejection
    - The allowlist exception prefix ``@@||`` (allowlist feeds only)
    - Hosts-file prefixes (``0.0.0.0 ``, ``127.0.0.1 ``, ``::1 ``, ``:: ``)
    - Adblock markers (``||``, ``^$important``, ``*.``, ``^``)
    - Lowercasing and IDNA encoding of international names
    """

    def normalize(self, raw: str, is_allowlist: bool = False) -> NormalizationResult:
        """
        Normalize a raw feed line.

        Args:
            raw: One line of feed text
            is_allowlist: Whether the line comes from an allowlist feed

        Returns:
            NormalizationResult with the canonical domain or a rejection reason
        """
        line = raw.strip() if raw else ""
        if not line:
            return self._reject(RejectionReason.EMPTY_INPUT)

        if is_comment(line):
            return self._reject(RejectionReason.COMMENT)

        value = self._strip_markers(line, is_allowlist).lower()

        if any(ord(c) > 127 for c in value):
            try:
                value = idna.encode(value, uts46=True).decode("ascii")
            except idna.IDNAError:
                return self._reject(RejectionReason.IDNA_ERROR)

        if not is_valid_domain(value):
            return self._reject(RejectionReason.INVALID_DOMAIN)

        return NormalizationResult(valid=True, domain=value)

    def normalize_domain(self, raw: str, is_allowlist: bool = False) -> Optional[str]:
        """Shorthand returning the canonical domain or None."""
        return self.normalize(raw, is_allowlist).domain

    def parse(self, text: str, is_allowlist: bool = False) -> FeedParseResult:
        """
        Normalize every line of a feed.

        Domains are returned once each, in the order they first appear.
        """
        seen: dict[str, None] = {}
        rejected: Counter = Counter()
        lines = 0

        for line in text.splitlines():
            lines += 1
            result = self.normalize(line, is_allowlist)
            if result.valid:
                seen.setdefault(result.domain, None)
            else:
                rejected[result.rejection] += 1

        return FeedParseResult(domains=list(seen), lines=lines, rejected=rejected)

    def _strip_markers(self, line: str, is_allowlist: bool) -> str:
        value = line
        if is_allowlist and value.startswith(ALLOWLIST_EXCEPTION_PREFIX):
            value = value[len(ALLOWLIST_EXCEPTION_PREFIX):]

        value = HOSTS_IP_PREFIX_PATTERN.sub("", value, count=1)

        if value.startswith("||"):
            value = value[2:]
        if value.endswith("^$important"):
            value = value[: -len("^$important")]
        if value.startswith("*."):
            value = value[2:]
        if value.endswith("^"):
            value = value[:-1]

        return value.strip()

    @staticmethod
    def _reject(reason: RejectionReason) -> NormalizationResult:
        return NormalizationResult(valid=False, domain=None, rejection=reason)


def parse_feed(
    text: str,
    is_allowlist: bool = False,
    normalizer: Optional[DomainNormalizer] = None,
) -> list[str]:
    """Return the unique canonical domains of a feed in first-seen order."""
    return (normalizer or DomainNormalizer()).parse(text, is_allowlist).domains
