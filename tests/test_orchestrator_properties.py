"""
Property-based tests for the Sync Orchestrator.

Feeds and the gateway are in-memory test doubles; the simulation-mode test
runs the real gateway client without network access.
"""

import asyncio
from io import StringIO
from typing import Dict, List, Optional, Sequence

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from gateway_sync.audit_logger import AuditLogger
from gateway_sync.config import FeedConfig, GatewayConfig, SyncConfig, SystemConfig
from gateway_sync.enums import LogLevel
from gateway_sync.exceptions import ConfigurationError, FeedError, GatewayError
from gateway_sync.gateway_client import CloudflareGatewayClient
from gateway_sync.models import RemoteList, RemoteRule
from gateway_sync.notifications import NotificationPayload, NotificationRouter
from gateway_sync.orchestrator import SyncOrchestrator, merge_ordered


ALLOW_URL = "https://feeds.example/allow.txt"
BLOCK_URL = "https://feeds.example/block.txt"


class FakeFeedSource:
    """Serves feed text from a dict; unknown URLs fail like a 404."""

    def __init__(self, feeds: Dict[str, str]) -> None:
        self._feeds = feeds
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> str:
        self.fetched.append(url)
        if url not in self._feeds:
            raise FeedError(code="http_error", message=f"HTTP 404: Not Found ({url})", details={"url": url})
        return self._feeds[url]


class FakeGateway:
    """In-memory gateway that records every mutation."""

    def __init__(
        self,
        lists: Optional[List[RemoteList]] = None,
        rules: Optional[List[RemoteRule]] = None,
        fail_on_create_list: Optional[int] = None,
        hidden_names: Sequence[str] = (),
    ) -> None:
        self.lists: Dict[str, RemoteList] = {item.id: item for item in lists or []}
        self.rules: Dict[str, RemoteRule] = {item.id: item for item in rules or []}
        self.list_items: Dict[str, List[str]] = {}
        self.calls: List[tuple] = []
        self._next_id = 100
        self._fail_on_create_list = fail_on_create_list
        self._created_lists = 0
        self._hidden_names = set(hidden_names)

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    async def list_lists(self) -> List[RemoteList]:
        return [item for item in self.lists.values() if item.name not in self._hidden_names]

    async def create_list(self, name: str, domains: Sequence[str]) -> RemoteList:
        self._created_lists += 1
        if self._created_lists == self._fail_on_create_list:
            raise GatewayError(code="server_error", message="HTTP 500", details={"operation": "create_list"})
        remote = RemoteList(id=self._new_id(), name=name, count=len(domains))
        self.lists[remote.id] = remote
        self.list_items[remote.id] = list(domains)
        self.calls.append(("create_list", name))
        return remote

    async def delete_list(self, list_id: str) -> None:
        self.calls.append(("delete_list", self.lists.pop(list_id).name))

    async def list_rules(self) -> List[RemoteRule]:
        return list(self.rules.values())

    async def create_rule(self, name: str, expression: str, filters: Sequence[str]) -> RemoteRule:
        remote = RemoteRule(id=self._new_id(), name=name, traffic=expression, filters=list(filters))
        self.rules[remote.id] = remote
        self.calls.append(("create_rule", name))
        return remote

    async def update_rule(self, rule_id: str, name: str, expression: str, filters: Sequence[str]) -> RemoteRule:
        remote = RemoteRule(id=rule_id, name=name, traffic=expression, filters=list(filters))
        self.rules[rule_id] = remote
        self.calls.append(("update_rule", name))
        return remote

    async def delete_rule(self, rule_id: str) -> None:
        self.calls.append(("delete_rule", self.rules.pop(rule_id).name))

    def managed_lists(self) -> List[RemoteList]:
        return [item for item in self.lists.values() if item.name.startswith("CGPS List - Chunk ")]


class RecordingChannel:
    def __init__(self) -> None:
        self.payloads: List[NotificationPayload] = []

    async def send(self, payload: NotificationPayload) -> bool:
        self.payloads.append(payload)
        return True

    def get_name(self) -> str:
        return "recording"


def make_config(
    allow_urls: Optional[List[str]] = None,
    block_urls: Optional[List[str]] = None,
    chunk_size: int = 2,
    ceiling: Optional[int] = None,
    enable_sni: bool = False,
    simulation_mode: bool = False,
) -> SystemConfig:
    return SystemConfig(
        gateway=GatewayConfig(account_id="acc", api_token="token"),
        feeds=FeedConfig(
            allowlist_urls=[ALLOW_URL] if allow_urls is None else allow_urls,
            blocklist_urls=[BLOCK_URL] if block_urls is None else block_urls,
        ),
        sync=SyncConfig(ceiling=ceiling, chunk_size=chunk_size, enable_sni=enable_sni),
        simulation_mode=simulation_mode,
    )


def make_orchestrator(config, feeds, gateway, with_channel: bool = True):
    logger = AuditLogger(output_stream=StringIO(), min_level=LogLevel.DEBUG)
    channel = RecordingChannel()
    notifier = None
    if with_channel:
        notifier = NotificationRouter(logger=logger)
        notifier.register_channel(channel)
    orchestrator = SyncOrchestrator(config, FakeFeedSource(feeds), gateway, notifier, logger)
    return orchestrator, channel, logger


class TestFullSync:
    """
    Tests for a complete sync run.

    **Property 32: The gateway ends up holding exactly the final blocklist**
    """

    def test_lists_and_rule_created(self) -> None:
        feeds = {
            ALLOW_URL: "good.example\n",
            BLOCK_URL: "0.0.0.0 ads.example\n||tracker.example^\nsub.ads.example\ngood.example\nx.good.example\nmetrics.example\n",
        }
        gateway = FakeGateway()
        orchestrator, channel, _ = make_orchestrator(make_config(), feeds, gateway)

        result = orchestrator.sync()

        assert result.final_block_count == 3
        assert result.chunk_count == 2
        assert result.stats.allowed == 2
        assert result.stats.duplicate == 1
        lists = gateway.managed_lists()
        assert [gateway.list_items[item.id] for item in lists] == [
            ["ads.example", "tracker.example"],
            ["metrics.example"],
        ]
        assert [item.name for item in lists] == ["CGPS List - Chunk 1", "CGPS List - Chunk 2"]

        rules = list(gateway.rules.values())
        assert [rule.name for rule in rules] == ["CGPS Filter Lists"]
        assert rules[0].traffic == " or ".join(f"any(dns.domains[*] in ${item.id})" for item in lists)
        assert rules[0].filters == ["dns"]
        assert result.list_ids == [item.id for item in lists]

        assert len(channel.payloads) == 1
        assert not channel.payloads[0].is_error
        assert "Blocked: 3" in channel.payloads[0].message

    def test_sni_rule(self) -> None:
        gateway = FakeGateway()
        orchestrator, _, _ = make_orchestrator(
            make_config(allow_urls=[], enable_sni=True), {BLOCK_URL: "ads.example\n"}, gateway
        )

        result = asyncio.run(orchestrator.run_sync())

        assert result.rules == ["CGPS Filter Lists", "CGPS Filter Lists - SNI Based Filtering"]
        sni = [rule for rule in gateway.rules.values() if rule.filters == ["l4"]][0]
        assert sni.traffic.startswith("any(net.sni.domains[*] in $")

    def test_managed_objects_replaced_unmanaged_kept(self) -> None:
        gateway = FakeGateway(
            lists=[
                RemoteList(id="1", name="CGPS List - Chunk 1"),
                RemoteList(id="2", name="CGPS List - Chunk 7"),
                RemoteList(id="3", name="My own list"),
            ],
            rules=[
                RemoteRule(id="r1", name="CGPS Filter Lists", traffic="any(dns.domains[*] in $1)"),
                RemoteRule(id="r2", name="CGPS Filter Lists - SNI Based Filtering"),
                RemoteRule(id="r3", name="Block gambling"),
            ],
        )
        orchestrator, _, _ = make_orchestrator(make_config(allow_urls=[]), {BLOCK_URL: "ads.example\n"}, gateway)

        orchestrator.sync()

        assert "3" in gateway.lists
        assert "r3" in gateway.rules
        assert [item.name for item in gateway.managed_lists()] == ["CGPS List - Chunk 1"]
        assert gateway.managed_lists()[0].id not in {"1", "2"}
        # Rules go before the lists they reference
        deletions = [call for call in gateway.calls if call[0].startswith("delete")]
        assert deletions[:2] == [
            ("delete_rule", "CGPS Filter Lists"),
            ("delete_rule", "CGPS Filter Lists - SNI Based Filtering"),
        ]
        assert sorted(deletions[2:]) == [
            ("delete_list", "CGPS List - Chunk 1"),
            ("delete_list", "CGPS List - Chunk 7"),
        ]
        assert ("create_rule", "CGPS Filter Lists") in gateway.calls

    @given(
        domains=st.lists(
            st.from_regex(r"[a-z]{1,8}\.(com|net|org)", fullmatch=True),
            min_size=1,
            max_size=40,
            unique=True,
        ),
        chunk_size=st.integers(min_value=1, max_value=7),
    )
    @settings(max_examples=50, deadline=None)
    def test_chunks_reassemble_final_list(self, domains: List[str], chunk_size: int) -> None:
        """
        Property 32: Chunks reassemble the final blocklist.

        *For any* set of unrelated domains, concatenating the created lists in
        chunk order SHALL give the final blocklist in feed order.
        """
        gateway = FakeGateway()
        orchestrator, _, _ = make_orchestrator(
            make_config(allow_urls=[], chunk_size=chunk_size), {BLOCK_URL: "\n".join(domains)}, gateway
        )

        result = orchestrator.sync()

        created = [gateway.list_items[list_id] for list_id in result.list_ids]
        assert [domain for chunk in created for domain in chunk] == domains
        assert all(len(chunk) == chunk_size for chunk in created[:-1])
        assert result.chunk_count == -(-len(domains) // chunk_size)


class TestSkipAndAbort:
    """
    Tests for runs that change nothing or stop early.

    **Property 33: Failed or empty runs leave remote state alone**
    """

    def test_empty_result_is_skipped(self) -> None:
        gateway = FakeGateway(lists=[RemoteList(id="1", name="CGPS List - Chunk 1")])
        orchestrator, channel, logger = make_orchestrator(
            make_config(), {ALLOW_URL: "ads.example\n", BLOCK_URL: "ads.example\n# comment\n"}, gateway
        )

        result = orchestrator.sync()

        assert result.skipped
        assert gateway.calls == []
        assert "1" in gateway.lists
        assert "Skipped" in channel.payloads[0].message
        assert any(entry.level == LogLevel.WARN for entry in logger.entries)

    def test_feed_error_notifies_and_reraises(self) -> None:
        gateway = FakeGateway()
        orchestrator, channel, logger = make_orchestrator(make_config(), {BLOCK_URL: "ads.example\n"}, gateway)

        with pytest.raises(FeedError):
            orchestrator.sync()

        assert gateway.calls == []
        assert channel.payloads[0].is_error
        assert ALLOW_URL in channel.payloads[0].message
        errors = [entry for entry in logger.entries if entry.level == LogLevel.ERROR]
        assert errors[0].component == "SyncOrchestrator"

    def test_gateway_error_aborts_run(self) -> None:
        gateway = FakeGateway(fail_on_create_list=2)
        orchestrator, channel, _ = make_orchestrator(
            make_config(allow_urls=[], chunk_size=1), {BLOCK_URL: "a.com\nb.com\nc.com\n"}, gateway
        )

        with pytest.raises(GatewayError):
            orchestrator.sync()

        assert gateway.calls == [("create_list", "CGPS List - Chunk 1")]
        assert gateway.rules == {}
        assert channel.payloads[0].is_error

    def test_unlisted_created_list_aborts_before_rules(self) -> None:
        gateway = FakeGateway(hidden_names=["CGPS List - Chunk 1"])
        orchestrator, channel, _ = make_orchestrator(
            make_config(allow_urls=[], chunk_size=2), {BLOCK_URL: "a.com\nb.com\nc.com\n"}, gateway
        )

        with pytest.raises(GatewayError) as exc_info:
            orchestrator.sync()

        assert exc_info.value.operation == "list_lists"
        assert exc_info.value.details["missing"] == ["CGPS List - Chunk 1"]
        assert len(gateway.managed_lists()) == 2
        assert gateway.rules == {}
        assert channel.payloads[0].is_error

    def test_missing_blocklist_urls(self) -> None:
        orchestrator, _, _ = make_orchestrator(make_config(block_urls=[]), {}, FakeGateway(), with_channel=False)

        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.sync()

        assert exc_info.value.code == "missing_feeds"

    def test_bad_limits_rejected_before_download(self) -> None:
        feeds = FakeFeedSource({BLOCK_URL: "a.com\n"})
        orchestrator = SyncOrchestrator(make_config(allow_urls=[]), feeds, FakeGateway())

        with pytest.raises(ConfigurationError):
            asyncio.run(orchestrator.reconcile_feeds(chunk_size=0))

        assert feeds.fetched == []


class TestFeedOrderProperty:
    """
    Tests for merging several feeds.

    **Property 34: Feeds merge in URL order, first occurrence wins**
    """

    @given(groups=st.lists(st.lists(st.sampled_from(["a.com", "b.com", "c.com", "d.com"]), max_size=5), max_size=4))
    @settings(max_examples=100)
    def test_merge_ordered(self, groups: List[List[str]]) -> None:
        """
        Property 34: Ordered merge.

        *For any* groups, the merge SHALL contain each domain once, at the
        position of its first occurrence in the concatenated groups.
        """
        flat = [domain for group in groups for domain in group]

        assert merge_ordered(groups) == list(dict.fromkeys(flat))

    def test_reconcile_respects_url_order(self) -> None:
        urls = ["https://feeds.example/1.txt", "https://feeds.example/2.txt"]
        feeds = {urls[0]: "z.com\nshared.com\n", urls[1]: "shared.com\na.com\n"}
        orchestrator, _, _ = make_orchestrator(make_config(allow_urls=[], block_urls=urls), feeds, FakeGateway())

        result = asyncio.run(orchestrator.reconcile_feeds())

        assert result.domains == ["z.com", "shared.com", "a.com"]
        assert result.stats.processed == 3


class TestSimulationRun:
    def test_dry_run_with_simulated_gateway(self) -> None:
        config = make_config(allow_urls=[], chunk_size=2, simulation_mode=True)
        gateway = CloudflareGatewayClient(config.gateway, simulation_mode=True)
        orchestrator, channel, _ = make_orchestrator(config, {BLOCK_URL: "a.com\nb.com\nc.com\n"}, gateway)

        result = orchestrator.sync()

        assert result.dry_run
        assert result.chunk_count == 2
        assert all(list_id.startswith("simulated-list-") for list_id in result.list_ids)
        assert "(dry run)" in channel.payloads[0].message
