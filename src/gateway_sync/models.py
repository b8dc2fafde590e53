"""
Data models for the gateway sync system.

This module defines the transient structures produced by one sync run:
reconciliation statistics, list chunks, remote gateway objects and the
final run result.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ReconciliationStats:
    """Counters collected while reconciling one blocklist."""

    processed: int = 0
    allowed: int = 0
    duplicate: int = 0
    dropped: int = 0
    final_blocked: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "allowed": self.allowed,
            "duplicate": self.duplicate,
            "dropped": self.dropped,
            "final_blocked": self.final_blocked,
        }


@dataclass
class ReconciliationResult:
    """Ordered final blocklist plus the statistics that produced it."""

    domains: list[str]
    stats: ReconciliationStats
    allowlist_size: int = 0


@dataclass
class ListChunk:
    """A size-bounded slice of the final blocklist, mapped to one remote list."""

    index: int  # 1-based, creation order
    name: str
    domains: list[str]

    def __len__(self) -> int:
        return len(self.domains)


@dataclass
class RemoteList:
    """A list object as reported by the gateway."""

    id: str
    name: str
    count: Optional[int] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteList":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            count=data.get("count"),
        )


@dataclass
class RemoteRule:
    """A filtering rule object as reported by the gateway."""

    id: str
    name: str
    traffic: str = ""
    filters: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteRule":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            traffic=data.get("traffic", "") or "",
            filters=list(data.get("filters") or []),
        )


@dataclass
class RuleDefinition:
    """A rule this system wants to exist on the gateway."""

    name: str
    expression: str
    filters: list[str]


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    stats: ReconciliationStats
    final_block_count: int
    chunk_count: int
    allowlist_size: int = 0
    list_ids: list[str] = field(default_factory=list)
    rules: list[str] = field(default_factory=list)
    skipped: bool = False
    dry_run: bool = False
