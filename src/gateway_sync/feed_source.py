"""
Feed download client.

Fetches the raw text of allow/block feeds over HTTPS. Transient failures
(timeouts, connection errors, 429 and 5xx responses) are retried with the
shared RetryManager; anything left over is raised as FeedError.
"""

from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable

import httpx

from .audit_logger import AuditLogger
from .config import RetryConfig
from .enums import FeedErrorCode, LogLevel
from .exceptions import FeedError
from .retry_manager import RetryManager


USER_AGENT = "gateway-blocklist-sync/0.1.0"


@runtime_checkable
class FeedSource(Protocol):
    """Protocol for anything that can return the raw text of a feed URL."""

    @abstractmethod
    async def fetch(self, url: str) -> str:
        """
        Download one feed.

        Raises:
            FeedError: If the feed could not be downloaded
        """
        ...


class HTTPFeedSource:
    """Feed source backed by httpx.AsyncClient."""

    def __init__(
        self,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[AuditLogger] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_manager: Optional[RetryManager] = None,
    ) -> None:
        """
        Initialize the feed source.

        Args:
            timeout: Request timeout in seconds
            retry_config: Retry behavior for transient failures
            logger: Optional audit logger
            client: Optional pre-built client (it is not closed by this object)
            retry_manager: Optional retry manager, overrides retry_config
        """
        self._timeout = timeout
        self._retry = retry_manager or RetryManager(retry_config or RetryConfig())
        self._logger = logger
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HTTPFeedSource":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_client = True
        return self._client

    async def fetch(self, url: str) -> str:
        """Download a feed, retrying transient failures."""
        self._log(LogLevel.INFO, f"Fetching domains from {url}", {"url": url})
        text = await self._retry.run(lambda: self._fetch_once(url))
        self._log(LogLevel.DEBUG, f"Fetched {len(text)} bytes from {url}", {"url": url})
        return text

    async def _fetch_once(self, url: str) -> str:
        client = self._ensure_client()
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise FeedError(
                code=FeedErrorCode.TIMEOUT.value,
                message=f"Timed out fetching {url}",
                details={"url": url, "error": str(e)},
            ) from e
        except httpx.HTTPError as e:
            raise FeedError(
                code=FeedErrorCode.NETWORK_ERROR.value,
                message=f"Failed to fetch {url}: {e}",
                details={"url": url, "error": str(e)},
            ) from e

        if response.is_success:
            return response.text

        if response.status_code == 429:
            code = FeedErrorCode.RATE_LIMITED.value
        elif response.status_code >= 500:
            code = FeedErrorCode.SERVER_ERROR.value
        else:
            code = FeedErrorCode.HTTP_ERROR.value

        self._log(
            LogLevel.WARN,
            f"Feed request failed with HTTP {response.status_code}",
            {"url": url, "status_code": response.status_code},
        )
        raise FeedError(
            code=code,
            message=f"HTTP {response.status_code}: {response.reason_phrase} ({url})",
            details={"url": url, "status_code": response.status_code},
        )

    async def close(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "FeedSource", message, data)
