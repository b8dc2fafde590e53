"""
List partitioning.

Splits the final blocklist into fixed-size chunks, one per remote list
object, named by position so identical input always yields identical names.
"""

from typing import Sequence

from .config import DEFAULT_CHUNK_SIZE, DEFAULT_LIST_PREFIX
from .enums import ConfigErrorCode
from .exceptions import ConfigurationError
from .models import ListChunk


def chunk_name(prefix: str, index: int) -> str:
    """Name of the index-th (1-based) list owned by prefix."""
    return f"{prefix} - Chunk {index}"


def chunk_count(total: int, chunk_size: int) -> int:
    """Number of chunks needed for total items (ceiling division)."""
    return -(-total // chunk_size)


class ListPartitioner:
    """Positional splitter for the final blocklist."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        list_prefix: str = DEFAULT_LIST_PREFIX,
    ) -> None:
        if chunk_size < 1:
            raise ConfigurationError(
                code=ConfigErrorCode.INVALID_VALUE.value,
                message=f"chunk_size must be positive, got {chunk_size}",
                details={"chunk_size": chunk_size},
            )
        self._chunk_size = chunk_size
        self._list_prefix = list_prefix

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def list_prefix(self) -> str:
        return self._list_prefix

    def partition(self, domains: Sequence[str]) -> list[ListChunk]:
        """
        Split domains into chunks of chunk_size, keeping order.

        Chunk k (1-based) holds domains[(k-1)*chunk_size : k*chunk_size];
        only the last chunk may be shorter.
        """
        return [
            ListChunk(
                index=number,
                name=chunk_name(self._list_prefix, number),
                domains=list(domains[start:start + self._chunk_size]),
            )
            for number, start in enumerate(range(0, len(domains), self._chunk_size), start=1)
        ]

    def is_managed(self, list_name: str) -> bool:
        """Whether a remote list name belongs to this prefix's chunks."""
        return list_name.startswith(f"{self._list_prefix} - Chunk ")
