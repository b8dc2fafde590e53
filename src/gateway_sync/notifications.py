"""
Notification Router module for the gateway sync system.

Provides notification channels (Telegram, Webhook) and a router that delivers
run summaries and failure reports with retry logic. Delivery is best-effort:
a notification problem is logged but never fails the sync run.
"""

import asyncio
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol, runtime_checkable

import httpx

from .config import RetryConfig, TelegramConfig, WebhookConfig
from .enums import LogLevel, NotificationErrorCode
from .exceptions import NotificationError
from .models import SyncResult
from .retry_manager import RetryManager

if TYPE_CHECKING:
    from .audit_logger import AuditLogger


TELEGRAM_API_HOST = "https://api.telegram.org"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class NotificationPayload:
    """Payload for a notification message."""

    message: str
    is_error: bool = False
    timestamp: str = field(default_factory=_now)


@dataclass
class NotificationResult:
    """Result of a notification delivery attempt."""

    channel: str
    success: bool
    error: Optional[str] = None
    attempts: int = 1


def format_success_message(result: SyncResult) -> str:
    """
    Build the run summary sent after a successful sync.

    Args:
        result: The finished sync result

    Returns:
        Multi-line summary with processing statistics
    """
    if result.skipped:
        return (
            "ℹ️ Filter Lists Update Skipped\n\n"
            "No domains left to block after reconciliation; remote lists were left untouched."
        )

    stats = result.stats
    title = "✅ Filter Lists Update Complete"
    if result.dry_run:
        title += " (dry run)"
    return (
        f"{title}\n\n"
        "📊 Statistics:\n"
        f"• Total Processed: {stats.processed}\n"
        f"• Allowlisted: {stats.allowed}\n"
        f"• Duplicates: {stats.duplicate}\n"
        f"• Dropped (limit): {stats.dropped}\n"
        f"• Blocked: {result.final_block_count}\n"
        f"• Lists Created: {result.chunk_count}"
    )


def format_failure_message(error: BaseException) -> str:
    """Build the message sent when a sync run aborts."""
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    return f"❌ Filter Lists Update Failed:\n{message}"


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol defining the interface for notification channels."""

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> bool:
        """
        Send a notification.

        Args:
            payload: The notification payload to send

        Returns:
            True if delivery was successful, False otherwise
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class TelegramChannel:
    """Telegram notification channel using the Bot API."""

    def __init__(
        self,
        config: TelegramConfig,
        simulation_mode: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_host: str = TELEGRAM_API_HOST,
    ) -> None:
        """
        Initialize Telegram channel.

        Args:
            config: Telegram configuration with bot_token and chat_id
            simulation_mode: If True, no real network requests are made
            transport: Optional httpx transport (used by tests)
            api_host: Bot API host
        """
        self._chat_id = config.chat_id
        self._url = f"{api_host}/bot{config.bot_token}/sendMessage"
        self._simulation_mode = simulation_mode
        self._transport = transport

    async def send(self, payload: NotificationPayload) -> bool:
        if self._simulation_mode:
            return True

        async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
            try:
                response = await client.post(
                    self._url,
                    json={
                        "chat_id": self._chat_id,
                        "text": payload.message,
                        "parse_mode": "HTML",
                        # Only failures should make a sound
                        "disable_notification": not payload.is_error,
                    },
                )
            except httpx.HTTPError:
                return False
            return response.status_code == 200

    def get_name(self) -> str:
        return "telegram"


class WebhookChannel:
    """Generic webhook notification channel using HTTP POST."""

    def __init__(
        self,
        config: WebhookConfig,
        simulation_mode: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize Webhook channel.

        Args:
            config: Webhook configuration with URL and optional headers
            simulation_mode: If True, no real network requests are made
            transport: Optional httpx transport (used by tests)
        """
        self._url = config.url
        self._headers = config.headers.copy()
        self._simulation_mode = simulation_mode
        self._transport = transport

    async def send(self, payload: NotificationPayload) -> bool:
        """Send notification via HTTP POST webhook."""
        if self._simulation_mode:
            return True

        data = {
            "message": payload.message,
            "is_error": payload.is_error,
            "timestamp": payload.timestamp,
        }
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
            try:
                response = await client.post(self._url, json=data, headers=headers)
            except httpx.HTTPError:
                return False
            return 200 <= response.status_code < 300

    def get_name(self) -> str:
        return "webhook"


@dataclass
class DeliveryAttempt:
    """One failed delivery to a channel."""

    attempt_number: int
    error: str
    timestamp: str


class NotificationRouter:
    """
    Routes notifications to registered channels.

    Each channel gets its own RetryManager run in which every failure counts
    as transient. Exhausted channels are logged with their attempt history;
    nothing is raised.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional["AuditLogger"] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the notification router.

        Args:
            retry_config: Backoff settings for every channel
            logger: Optional audit logger for exhausted deliveries
            sleep: Coroutine used to wait between attempts
        """
        self._channels: list[NotificationChannel] = []
        self._retry_manager = RetryManager(retry_config or RetryConfig(), sleep=sleep)
        self._logger = logger

    def register_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    def unregister_channel(self, channel_name: str) -> bool:
        """
        Unregister a notification channel by name.

        Returns:
            True if channel was found and removed, False otherwise
        """
        for i, channel in enumerate(self._channels):
            if channel.get_name() == channel_name:
                del self._channels[i]
                return True
        return False

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    async def notify(self, payload: NotificationPayload) -> list[NotificationResult]:
        """Deliver payload to every channel in registration order."""
        return [await self._deliver(channel, payload) for channel in self._channels]

    async def notify_success(self, result: SyncResult) -> list[NotificationResult]:
        return await self.notify(NotificationPayload(message=format_success_message(result)))

    async def notify_failure(self, error: BaseException) -> list[NotificationResult]:
        return await self.notify(
            NotificationPayload(message=format_failure_message(error), is_error=True)
        )

    async def _deliver(
        self,
        channel: NotificationChannel,
        payload: NotificationPayload,
    ) -> NotificationResult:
        name = channel.get_name()
        history: list[DeliveryAttempt] = []

        async def attempt() -> None:
            try:
                delivered = await channel.send(payload)
            except Exception as e:
                code, reason = NotificationErrorCode.SEND_FAILED, str(e) or type(e).__name__
            else:
                if delivered:
                    return
                code, reason = NotificationErrorCode.REJECTED, "Channel returned failure"

            history.append(
                DeliveryAttempt(attempt_number=len(history) + 1, error=reason, timestamp=_now())
            )
            raise NotificationError(code=code.value, message=reason, details={"channel": name})

        outcome = await self._retry_manager.execute_with_retry(
            attempt, is_retryable=lambda error: isinstance(error, NotificationError)
        )
        if outcome.success:
            return NotificationResult(channel=name, success=True, attempts=outcome.attempts)

        self._log_delivery_exhausted(name, payload, history)
        return NotificationResult(
            channel=name,
            success=False,
            error=str(outcome.last_error),
            attempts=outcome.attempts,
        )

    def _log_delivery_exhausted(
        self,
        channel_name: str,
        payload: NotificationPayload,
        history: list[DeliveryAttempt],
    ) -> None:
        if self._logger is None:
            return

        self._logger.log(
            level=LogLevel.ERROR,
            component="NotificationRouter",
            message=f"All notification retries failed for channel '{channel_name}'",
            data={
                "channel": channel_name,
                "is_error": payload.is_error,
                "timestamp": payload.timestamp,
                "total_attempts": len(history),
                "attempts": [
                    {
                        "attempt": item.attempt_number,
                        "error": item.error,
                        "timestamp": item.timestamp,
                    }
                    for item in history
                ],
            },
        )
