"""
Gateway API client.

Provides CRUD access to the list and rule objects of a Cloudflare Zero Trust
Gateway account. The client owns the transport concerns of the sync:

- Bearer authentication and the Cloudflare response envelope
  (``success`` / ``errors`` / ``result``)
- Serial, rate-limited access per endpoint
- A cooldown on HTTP 429 that does not count against the retry budget
- Exponential-backoff retries for timeouts, connection errors and 5xx
- Simulation mode, where mutations are kept in memory and nothing is sent
"""

import asyncio
import itertools
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, runtime_checkable

import httpx

from .audit_logger import AuditLogger
from .config import GatewayConfig, RateLimitConfig, RetryConfig
from .enums import GatewayErrorCode, LogLevel
from .exceptions import GatewayError, RateLimitError
from .models import RemoteList, RemoteRule
from .rate_limiter import RateLimiter
from .retry_manager import RetryManager


RULE_DESCRIPTION = (
    "Filter lists created by Cloudflare Gateway Pi-hole Scripts. Avoid editing this rule. "
    "Changing the name of this rule will break the script."
)
BLOCK_REASON = "Blocked by CGPS, check your filter lists if this was a mistake."


def build_rule_payload(
    name: str,
    expression: str,
    filters: Sequence[str],
    block_page_enabled: bool = False,
) -> dict[str, Any]:
    """Build the JSON body for creating or updating a blocking rule."""
    return {
        "name": name,
        "description": RULE_DESCRIPTION,
        "enabled": True,
        "action": "block",
        "filters": list(filters),
        "traffic": expression,
        "rule_settings": {
            "block_page_enabled": block_page_enabled,
            "block_reason": BLOCK_REASON,
        },
    }


def build_list_payload(name: str, domains: Sequence[str]) -> dict[str, Any]:
    """Build the JSON body for creating a domain list."""
    return {
        "name": name,
        "type": "DOMAIN",
        "items": [{"value": domain} for domain in domains],
    }


@runtime_checkable
class GatewayClient(Protocol):
    """Protocol for the remote list/rule store."""

    @abstractmethod
    async def list_lists(self) -> list[RemoteList]:
        ...

    @abstractmethod
    async def create_list(self, name: str, domains: Sequence[str]) -> RemoteList:
        ...

    @abstractmethod
    async def delete_list(self, list_id: str) -> None:
        ...

    @abstractmethod
    async def list_rules(self) -> list[RemoteRule]:
        ...

    @abstractmethod
    async def create_rule(self, name: str, expression: str, filters: Sequence[str]) -> RemoteRule:
        ...

    @abstractmethod
    async def update_rule(
        self, rule_id: str, name: str, expression: str, filters: Sequence[str]
    ) -> RemoteRule:
        ...

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> None:
        ...


class CloudflareGatewayClient:
    """
    Async client for the Cloudflare Zero Trust Gateway API.

    All methods raise GatewayError once retries are exhausted.
    """

    # HTTP 429 cooldowns allowed per request before giving up
    MAX_RATE_LIMIT_COOLDOWNS = 5

    def __init__(
        self,
        config: GatewayConfig,
        rate_limits: Optional[RateLimitConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[AuditLogger] = None,
        simulation_mode: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the gateway client.

        Args:
            config: Account, credentials and API host
            rate_limits: Request limits applied before each call
            retry_config: Backoff policy for transient failures
            logger: Optional audit logger
            simulation_mode: If True, no network requests are made
            transport: Optional httpx transport (used by tests)
            sleep: Coroutine used for every wait (cooldowns, backoff)
        """
        self._config = config
        self._base_url = f"{config.api_host.rstrip('/')}/accounts/{config.account_id}/gateway"
        self._rate_limiter = RateLimiter(rate_limits or RateLimitConfig())
        self._retry = RetryManager(retry_config or RetryConfig(), sleep=sleep)
        self._logger = logger
        self._simulation_mode = simulation_mode
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._sleep = sleep

        self._simulated_lists: dict[str, RemoteList] = {}
        self._simulated_rules: dict[str, RemoteRule] = {}
        self._simulated_ids = itertools.count(1)

    async def __aenter__(self) -> "CloudflareGatewayClient":
        if not self._simulation_mode:
            self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def simulation_mode(self) -> bool:
        return self._simulation_mode

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    # Lists

    async def list_lists(self) -> list[RemoteList]:
        """Get every list of the account."""
        if self._simulation_mode:
            return list(self._simulated_lists.values())
        items = await self._get_all("/lists", "lists", "list_lists")
        return [RemoteList.from_api(item) for item in items]

    async def create_list(self, name: str, domains: Sequence[str]) -> RemoteList:
        """Create a DOMAIN list holding domains."""
        if self._simulation_mode:
            remote = RemoteList(id=f"simulated-list-{next(self._simulated_ids)}", name=name, count=len(domains))
            self._simulated_lists[remote.id] = remote
            self._log(LogLevel.INFO, f"[dry-run] Would create list \"{name}\"", {"items": len(domains)})
            return remote

        data = await self._request(
            "POST", "/lists", "lists", "create_list",
            json=build_list_payload(name, domains),
        )
        return RemoteList.from_api(data["result"])

    async def delete_list(self, list_id: str) -> None:
        if self._simulation_mode:
            self._simulated_lists.pop(list_id, None)
            self._log(LogLevel.INFO, f"[dry-run] Would delete list {list_id}", {"list_id": list_id})
            return
        await self._request("DELETE", f"/lists/{list_id}", "lists", "delete_list")

    # Rules

    async def list_rules(self) -> list[RemoteRule]:
        """Get every gateway rule of the account."""
        if self._simulation_mode:
            return list(self._simulated_rules.values())
        items = await self._get_all("/rules", "rules", "list_rules")
        return [RemoteRule.from_api(item) for item in items]

    async def create_rule(self, name: str, expression: str, filters: Sequence[str]) -> RemoteRule:
        if self._simulation_mode:
            remote = RemoteRule(
                id=f"simulated-rule-{next(self._simulated_ids)}",
                name=name,
                traffic=expression,
                filters=list(filters),
            )
            self._simulated_rules[remote.id] = remote
            self._log(LogLevel.INFO, f"[dry-run] Would create rule \"{name}\"", {"filters": list(filters)})
            return remote

        data = await self._request(
            "POST", "/rules", "rules", "create_rule",
            json=build_rule_payload(name, expression, filters, self._config.block_page_enabled),
        )
        return RemoteRule.from_api(data["result"])

    async def update_rule(
        self, rule_id: str, name: str, expression: str, filters: Sequence[str]
    ) -> RemoteRule:
        if self._simulation_mode:
            remote = RemoteRule(id=rule_id, name=name, traffic=expression, filters=list(filters))
            self._simulated_rules[rule_id] = remote
            self._log(LogLevel.INFO, f"[dry-run] Would update rule \"{name}\"", {"rule_id": rule_id})
            return remote

        data = await self._request(
            "PUT", f"/rules/{rule_id}", "rules", "update_rule",
            json=build_rule_payload(name, expression, filters, self._config.block_page_enabled),
        )
        return RemoteRule.from_api(data["result"])

    async def delete_rule(self, rule_id: str) -> None:
        if self._simulation_mode:
            self._simulated_rules.pop(rule_id, None)
            self._log(LogLevel.INFO, f"[dry-run] Would delete rule {rule_id}", {"rule_id": rule_id})
            return
        await self._request("DELETE", f"/rules/{rule_id}", "rules", "delete_rule")

    # Transport

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._config.api_token}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def _get_all(self, path: str, endpoint: str, operation: str) -> list[dict[str, Any]]:
        """Read every page of a collection endpoint."""
        items: list[dict[str, Any]] = []
        page = 1
        per_page = self._config.page_size

        while True:
            data = await self._request(
                "GET", path, endpoint, operation,
                params={"page": page, "per_page": per_page},
            )
            page_items = data.get("result") or []
            items.extend(page_items)

            result_info = data.get("result_info") or {}
            total_pages = result_info.get("total_pages")
            total_count = result_info.get("total_count")
            if total_pages is not None:
                more = page < total_pages
            elif total_count is not None:
                more = page * result_info.get("per_page", per_page) < total_count
            else:
                more = False

            if not more or not page_items:
                break
            page += 1

        self._log(
            LogLevel.DEBUG,
            f"Fetched {len(items)} items from {path} ({page} page(s))",
            {"operation": operation},
        )
        return items

    async def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        operation: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send one API call with rate limiting, cooldowns and retries."""

        async def attempt() -> dict[str, Any]:
            return await self._send(method, path, endpoint, operation, json, params)

        return await self._retry.run(attempt)

    async def _send(
        self,
        method: str,
        path: str,
        endpoint: str,
        operation: str,
        json: Optional[dict[str, Any]],
        params: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        client = self._ensure_client()
        url = f"{self._base_url}{path}"
        cooldowns = 0

        while True:
            async with self._rate_limiter.acquire(endpoint) as status:
                if not status.allowed:
                    self._log(
                        LogLevel.DEBUG,
                        f"Rate limit delay: {status.wait_seconds:.2f}s",
                        {"endpoint": endpoint, "reason": status.reason},
                    )
                    await self._sleep(status.wait_seconds)
                try:
                    response = await client.request(method, url, json=json, params=params)
                except httpx.TimeoutException as e:
                    raise self._error(GatewayErrorCode.TIMEOUT, f"{operation} timed out", operation) from e
                except httpx.HTTPError as e:
                    raise self._error(
                        GatewayErrorCode.NETWORK_ERROR, f"{operation} failed: {e}", operation
                    ) from e
                finally:
                    self._rate_limiter.record_request(endpoint)

            if response.status_code != 429:
                self._rate_limiter.reset_error_count(endpoint)
                return self._parse_envelope(response, operation)

            if cooldowns >= self.MAX_RATE_LIMIT_COOLDOWNS:
                raise RateLimitError(
                    code=GatewayErrorCode.RATE_LIMIT_EXHAUSTED.value,
                    message=f"{operation} still rate limited after {cooldowns} cooldowns",
                    details={"operation": operation, "status_code": 429},
                )
            cooldowns += 1
            delay = self._rate_limiter.apply_adaptive_delay(
                endpoint, 429, base_delay=self._retry_after(response)
            )
            self._log(
                LogLevel.WARN,
                f"Rate limited. Waiting {delay:.0f}s...",
                {"operation": operation, "cooldown": cooldowns},
            )
            await self._sleep(delay)

    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("Retry-After")
        if header:
            try:
                return float(header)
            except ValueError:
                pass
        return self._config.rate_limit_cooldown_seconds

    def _parse_envelope(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        """Check status and Cloudflare envelope; return the decoded body."""
        status_code = response.status_code

        if status_code >= 500:
            raise self._error(
                GatewayErrorCode.SERVER_ERROR,
                f"{operation} failed with HTTP {status_code}",
                operation,
                status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise self._error(
                GatewayErrorCode.PARSE_ERROR,
                f"{operation} returned invalid JSON (HTTP {status_code})",
                operation,
                status_code,
            ) from e

        if status_code >= 400 or not isinstance(data, dict) or not data.get("success", False):
            code = GatewayErrorCode.API_ERROR
            if status_code == 404:
                code = GatewayErrorCode.NOT_FOUND
            elif status_code >= 400:
                code = GatewayErrorCode.CLIENT_ERROR
            raise self._error(
                code,
                f"{operation} failed: {self._first_error_message(data, status_code)}",
                operation,
                status_code,
            )

        return data

    @staticmethod
    def _first_error_message(data: Any, status_code: int) -> str:
        if isinstance(data, dict):
            errors = data.get("errors") or []
            if errors and isinstance(errors[0], dict) and errors[0].get("message"):
                return str(errors[0]["message"])
        return f"HTTP {status_code}"

    def _error(
        self,
        code: GatewayErrorCode,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
    ) -> GatewayError:
        details: dict[str, Any] = {"operation": operation}
        if status_code is not None:
            details["status_code"] = status_code
        return GatewayError(code=code.value, message=message, details=details)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "GatewayClient", message, data)
