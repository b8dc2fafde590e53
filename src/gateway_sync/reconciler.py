"""
Blocklist reconciliation.

Applies allow-over-block precedence across domain hierarchies, removes
entries already covered by a blocked ancestor, and enforces the global item
ceiling. The result is the minimal ordered blocklist to upload.

Precedence for a block candidate ``d``:
- ``d`` itself allowlisted -> skipped as allowed
- ``d`` already accepted -> skipped as duplicate
- the most specific ancestor present in either index decides: an
  allowlisted ancestor skips ``d`` as allowed, a blocked ancestor skips it
  as duplicate (allowlist wins if the same ancestor is in both)
"""

from typing import Iterable, Optional, Union

from .audit_logger import AuditLogger
from .config import DEFAULT_CHUNK_SIZE
from .enums import ConfigErrorCode, LogLevel
from .exceptions import ConfigurationError
from .hierarchy_index import HierarchyIndex
from .models import ReconciliationResult, ReconciliationStats


class Reconciler:
    """
    Reconciles a raw blocklist against an allowlist.

    Each call to reconcile() owns its own block index and counters; a
    Reconciler instance holds configuration only and can be reused.
    """

    def __init__(
        self,
        ceiling: Optional[int] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            ceiling: Maximum total items across all lists, or None for no limit.
                Once fewer than chunk_size items of headroom remain, further
                domains are dropped; a ceiling of chunk_size or less drops all.
            chunk_size: Items per remote list
            logger: Optional audit logger
        """
        if chunk_size < 1:
            raise ConfigurationError(
                code=ConfigErrorCode.INVALID_VALUE.value,
                message=f"chunk_size must be positive, got {chunk_size}",
                details={"chunk_size": chunk_size},
            )
        self._ceiling = ceiling
        self._chunk_size = chunk_size
        self._logger = logger

    @property
    def ceiling(self) -> Optional[int]:
        return self._ceiling

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def max_accepted(self) -> Optional[int]:
        """Number of domains accepted before truncation starts."""
        if self._ceiling is None:
            return None
        return max(self._ceiling - self._chunk_size, 0)

    def reconcile(
        self,
        allowlist: Union[HierarchyIndex, Iterable[str]],
        blocklist: Iterable[str],
    ) -> ReconciliationResult:
        """
        Reconcile normalized block domains against the allowlist.

        Args:
            allowlist: Allowlisted domains, as an index or any iterable
            blocklist: Normalized block domains in the order they should be
                considered (this order decides which domains survive truncation)

        Returns:
            ReconciliationResult with the accepted domains in first-accepted order
        """
        allow_index = allowlist if isinstance(allowlist, HierarchyIndex) else HierarchyIndex(allowlist)
        block_index = HierarchyIndex()
        stats = ReconciliationStats()
        accepted: list[str] = []
        max_accepted = self.max_accepted

        for domain in blocklist:
            stats.processed += 1

            if domain in allow_index:
                stats.allowed += 1
                continue

            if domain in block_index:
                stats.duplicate += 1
                continue

            allowed_by = allow_index.longest_match(domain, include_self=False)
            covered_by = block_index.longest_match(domain, include_self=False)
            if allowed_by is not None and (covered_by is None or len(allowed_by) >= len(covered_by)):
                stats.allowed += 1
                continue
            if covered_by is not None:
                stats.duplicate += 1
                continue

            if max_accepted is not None and len(accepted) >= max_accepted:
                if stats.dropped == 0:
                    self._log(
                        LogLevel.WARN,
                        f"Blocklist exceeds limit of {self._ceiling} items, ignoring further domains",
                        {"ceiling": self._ceiling, "chunk_size": self._chunk_size, "first_dropped": domain},
                    )
                stats.dropped += 1
                continue

            block_index.insert(domain)
            accepted.append(domain)

        stats.final_blocked = len(accepted)

        if stats.dropped:
            self._log(
                LogLevel.WARN,
                f"Dropped {stats.dropped} domains over the item ceiling",
                stats.to_dict(),
            )
        self._log(LogLevel.INFO, "Reconciliation finished", {**stats.to_dict(), "allowlist_size": len(allow_index)})

        return ReconciliationResult(
            domains=accepted,
            stats=stats,
            allowlist_size=len(allow_index),
        )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "Reconciler", message, data)


def reconcile(
    allowlist: Union[HierarchyIndex, Iterable[str]],
    blocklist: Iterable[str],
    ceiling: Optional[int] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ReconciliationResult:
    """Reconcile with a throwaway Reconciler."""
    return Reconciler(ceiling=ceiling, chunk_size=chunk_size).reconcile(allowlist, blocklist)
