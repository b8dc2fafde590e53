"""
Property-based tests for the Notification Router module.

Uses Hypothesis to verify run summaries, per-channel retries and that
delivery problems never escape the router.
"""

import asyncio
import json
from io import StringIO
from typing import List

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from gateway_sync.audit_logger import AuditLogger
from gateway_sync.config import RetryConfig, TelegramConfig, WebhookConfig
from gateway_sync.enums import LogLevel
from gateway_sync.exceptions import FeedError
from gateway_sync.models import ReconciliationStats, SyncResult
from gateway_sync.notifications import (
    NotificationChannel,
    NotificationPayload,
    NotificationRouter,
    TelegramChannel,
    WebhookChannel,
    format_failure_message,
    format_success_message,
)


async def no_sleep(delay: float) -> None:
    return None


class MockChannel:
    """Channel that fails a fixed number of times before succeeding."""

    def __init__(self, name: str, failures: int = 0, raises: bool = False) -> None:
        self._name = name
        self._failures = failures
        self._raises = raises
        self.payloads: List[NotificationPayload] = []

    async def send(self, payload: NotificationPayload) -> bool:
        self.payloads.append(payload)
        if len(self.payloads) <= self._failures:
            if self._raises:
                raise ConnectionError(f"{self._name} unreachable")
            return False
        return True

    def get_name(self) -> str:
        return self._name


@st.composite
def stats_strategy(draw) -> ReconciliationStats:
    counts = st.integers(min_value=0, max_value=10**6)
    return ReconciliationStats(
        processed=draw(counts),
        allowed=draw(counts),
        duplicate=draw(counts),
        dropped=draw(counts),
        final_blocked=draw(counts),
    )


class TestRunSummaryProperty:
    """
    Property-based tests for message formatting.

    **Property 30: Run summaries report every counter**
    """

    @given(stats=stats_strategy(), chunks=st.integers(min_value=1, max_value=300), dry_run=st.booleans())
    @settings(max_examples=100)
    def test_summary_contains_counters(self, stats: ReconciliationStats, chunks: int, dry_run: bool) -> None:
        """
        Property 30: Run summaries.

        *For any* completed run, the summary SHALL contain every counter and
        the number of lists created.
        """
        result = SyncResult(
            stats=stats,
            final_block_count=stats.final_blocked,
            chunk_count=chunks,
            dry_run=dry_run,
        )

        message = format_success_message(result)

        assert message.startswith("✅ Filter Lists Update Complete")
        assert ("(dry run)" in message) == dry_run
        assert f"Total Processed: {stats.processed}\n" in message
        assert f"Allowlisted: {stats.allowed}\n" in message
        assert f"Duplicates: {stats.duplicate}\n" in message
        assert f"Dropped (limit): {stats.dropped}\n" in message
        assert f"Blocked: {stats.final_blocked}\n" in message
        assert message.endswith(f"Lists Created: {chunks}")

    def test_skipped_run(self) -> None:
        result = SyncResult(stats=ReconciliationStats(), final_block_count=0, chunk_count=0, skipped=True)

        assert "Skipped" in format_success_message(result)

    def test_failure_message(self) -> None:
        error = FeedError(code="http_error", message="HTTP 404: Not Found (https://x/list.txt)")

        assert format_failure_message(error) == (
            "❌ Filter Lists Update Failed:\nHTTP 404: Not Found (https://x/list.txt)"
        )
        assert format_failure_message(RuntimeError("boom")).endswith("\nboom")
        assert format_failure_message(RuntimeError()).endswith("\nRuntimeError")


class TestNotificationRetryProperty:
    """
    Property-based tests for notification retries.

    **Property 31: Each channel is retried independently and never raises**
    """

    @given(
        failures=st.lists(st.integers(min_value=0, max_value=5), min_size=1, max_size=4),
        max_retries=st.integers(min_value=0, max_value=3),
        raises=st.booleans(),
    )
    @settings(max_examples=100, deadline=None)
    def test_retry_per_channel(self, failures: List[int], max_retries: int, raises: bool) -> None:
        """
        Property 31: Notification retries.

        *For any* set of channels, a channel failing fewer than max_retries + 1
        times SHALL be delivered, others SHALL be reported failed, and
        notify SHALL never raise.
        """
        router = NotificationRouter(retry_config=RetryConfig(max_retries=max_retries), sleep=no_sleep)
        channels = [MockChannel(f"channel-{i}", count, raises) for i, count in enumerate(failures)]
        for channel in channels:
            router.register_channel(channel)

        results = asyncio.run(router.notify(NotificationPayload(message="hello")))

        assert [r.channel for r in results] == [c.get_name() for c in channels]
        for count, channel, result in zip(failures, channels, results):
            if count <= max_retries:
                assert result.success
                assert result.attempts == count + 1
            else:
                assert not result.success
                assert result.attempts == max_retries + 1
                assert result.error
            assert len(channel.payloads) == result.attempts

    def test_exhausted_retries_are_logged(self) -> None:
        logger = AuditLogger(output_stream=StringIO())
        router = NotificationRouter(retry_config=RetryConfig(max_retries=2), logger=logger, sleep=no_sleep)
        router.register_channel(MockChannel("telegram", failures=10, raises=True))

        results = asyncio.run(router.notify(NotificationPayload(message="hello", is_error=True)))

        assert not results[0].success
        errors = [entry for entry in logger.entries if entry.level == LogLevel.ERROR]
        assert len(errors) == 1
        assert errors[0].component == "NotificationRouter"
        assert errors[0].data["total_attempts"] == 3
        assert errors[0].data["attempts"][0]["error"] == "telegram unreachable"

    def test_notify_failure_marks_error(self) -> None:
        router = NotificationRouter(sleep=no_sleep)
        channel = MockChannel("webhook")
        router.register_channel(channel)

        asyncio.run(router.notify_failure(RuntimeError("boom")))

        assert channel.payloads[0].is_error
        assert channel.payloads[0].message.startswith("❌")

    def test_register_and_unregister(self) -> None:
        router = NotificationRouter()
        channel = MockChannel("webhook")
        router.register_channel(channel)

        assert isinstance(channel, NotificationChannel)
        assert router.channels == [channel]
        assert router.unregister_channel("webhook")
        assert not router.unregister_channel("webhook")
        assert router.channels == []


class TestChannels:
    def test_telegram_request(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        channel = TelegramChannel(
            TelegramConfig(bot_token="123:abc", chat_id="42"),
            transport=httpx.MockTransport(handler),
        )

        assert asyncio.run(channel.send(NotificationPayload(message="done")))
        assert asyncio.run(channel.send(NotificationPayload(message="failed", is_error=True)))

        assert requests[0].url == "https://api.telegram.org/bot123:abc/sendMessage"
        first, second = (json.loads(r.content) for r in requests)
        assert first == {"chat_id": "42", "text": "done", "parse_mode": "HTML", "disable_notification": True}
        assert second["disable_notification"] is False

    def test_telegram_failure_status(self) -> None:
        channel = TelegramChannel(
            TelegramConfig(bot_token="t", chat_id="1"),
            transport=httpx.MockTransport(lambda request: httpx.Response(403)),
        )

        assert not asyncio.run(channel.send(NotificationPayload(message="x")))

    def test_webhook_request(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        channel = WebhookChannel(
            WebhookConfig(url="https://hooks.example/notify", headers={"X-Token": "abc"}),
            transport=httpx.MockTransport(handler),
        )
        payload = NotificationPayload(message="done", timestamp="2024-01-01T00:00:00+00:00")

        assert asyncio.run(channel.send(payload))
        assert requests[0].headers["X-Token"] == "abc"
        assert json.loads(requests[0].content) == {
            "message": "done",
            "is_error": False,
            "timestamp": "2024-01-01T00:00:00+00:00",
        }

    def test_webhook_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        channel = WebhookChannel(WebhookConfig(url="https://hooks.example"), transport=httpx.MockTransport(handler))

        assert not asyncio.run(channel.send(NotificationPayload(message="x")))

    def test_simulation_mode_sends_nothing(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        transport = httpx.MockTransport(handler)
        telegram = TelegramChannel(TelegramConfig(bot_token="t", chat_id="1"), True, transport)
        webhook = WebhookChannel(WebhookConfig(url="https://hooks.example"), True, transport)

        assert asyncio.run(telegram.send(NotificationPayload(message="x")))
        assert asyncio.run(webhook.send(NotificationPayload(message="x")))
