"""
Sync Orchestrator for the gateway sync system.

This module coordinates one full synchronization run:
- Download allow and block feeds (concurrently, results kept in URL order)
- Normalize and merge them
- Reconcile the blocklist against the allowlist under the item ceiling
- Replace the managed remote lists and point the blocking rules at them
- Report the outcome through the notification router

A run either completes or aborts on the first remote failure. Remote state
left behind by an aborted run is not rolled back; the next run replaces it.
"""

import asyncio
from typing import Iterable, Optional, Sequence

from .audit_logger import AuditLogger
from .config import SystemConfig
from .domain_normalizer import DomainNormalizer
from .enums import ConfigErrorCode, GatewayErrorCode, LogLevel
from .exceptions import ConfigurationError, GatewayError
from .feed_source import FeedSource
from .gateway_client import GatewayClient
from .hierarchy_index import HierarchyIndex
from .models import ReconciliationResult, RemoteList, RemoteRule, SyncResult
from .notifications import NotificationRouter
from .partitioner import ListPartitioner
from .reconciler import Reconciler
from .rule_builder import RuleExpressionBuilder


def merge_ordered(groups: Iterable[Iterable[str]]) -> list[str]:
    """Concatenate groups, keeping the first occurrence of every domain."""
    merged: dict[str, None] = {}
    for group in groups:
        for domain in group:
            merged.setdefault(domain, None)
    return list(merged)


class SyncOrchestrator:
    """
    Main orchestrator for blocklist synchronization.

    Collaborators are injected so the same flow runs against real HTTP
    clients, simulation-mode clients or in-memory test doubles.
    """

    def __init__(
        self,
        config: SystemConfig,
        feed_source: FeedSource,
        gateway_client: GatewayClient,
        notifier: Optional[NotificationRouter] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the sync orchestrator.

        Args:
            config: System configuration
            feed_source: Source used to download feeds
            gateway_client: Remote list/rule store
            notifier: Optional notification router for run reports
            logger: Optional audit logger
        """
        self._config = config
        self._feed_source = feed_source
        self._gateway = gateway_client
        self._notifier = notifier
        self._logger = logger
        self._normalizer = DomainNormalizer()

    # Feeds

    async def fetch_domains(self, urls: Sequence[str], is_allowlist: bool = False) -> list[str]:
        """
        Download and normalize a group of feeds.

        Returns the unique domains of all feeds, in URL order then line order.
        """
        texts = await asyncio.gather(*(self._feed_source.fetch(url) for url in urls))

        groups = []
        for url, text in zip(urls, texts):
            parsed = self._normalizer.parse(text, is_allowlist)
            groups.append(parsed.domains)
            self._log_debug(
                f"Parsed {len(parsed.domains)} domains from {url}",
                {
                    "url": url,
                    "lines": parsed.lines,
                    "rejected": {reason.value: count for reason, count in parsed.rejected.items()},
                },
            )
        return merge_ordered(groups)

    async def reconcile_feeds(
        self,
        allowlist_urls: Optional[Sequence[str]] = None,
        blocklist_urls: Optional[Sequence[str]] = None,
        ceiling: Optional[int] = None,
        chunk_size: Optional[int] = None,
    ) -> ReconciliationResult:
        """
        Fetch all feeds and reconcile them, without touching the gateway.

        Raises:
            FeedError: If any feed cannot be downloaded
            ConfigurationError: If chunk_size is not positive
        """
        allow_urls = list(self._config.feeds.allowlist_urls if allowlist_urls is None else allowlist_urls)
        block_urls = list(self._config.feeds.blocklist_urls if blocklist_urls is None else blocklist_urls)
        ceiling = self._config.sync.ceiling if ceiling is None else ceiling
        chunk_size = self._config.sync.chunk_size if chunk_size is None else chunk_size

        if not block_urls:
            raise ConfigurationError(
                code=ConfigErrorCode.MISSING_FEEDS.value,
                message="No blocklist URLs configured",
            )

        # Validate limits before any download starts
        reconciler = Reconciler(ceiling=ceiling, chunk_size=chunk_size, logger=self._logger)

        allow_domains, block_domains = await asyncio.gather(
            self.fetch_domains(allow_urls, is_allowlist=True),
            self.fetch_domains(block_urls, is_allowlist=False),
        )
        self._log_info(
            "Feeds downloaded",
            {
                "allowlist_feeds": len(allow_urls),
                "blocklist_feeds": len(block_urls),
                "allowlist_domains": len(allow_domains),
                "blocklist_domains": len(block_domains),
            },
        )

        return reconciler.reconcile(HierarchyIndex(allow_domains), block_domains)

    # Sync

    async def run_sync(
        self,
        allowlist_urls: Optional[Sequence[str]] = None,
        blocklist_urls: Optional[Sequence[str]] = None,
        ceiling: Optional[int] = None,
        chunk_size: Optional[int] = None,
        enable_sni: Optional[bool] = None,
    ) -> SyncResult:
        """
        Perform a complete synchronization run.

        Arguments left as None fall back to the configured values.

        Returns:
            SyncResult describing the run

        Raises:
            FeedError, GatewayError: On the first remote failure, after an
                error notification has been sent
        """
        try:
            result = await self._run(allowlist_urls, blocklist_urls, ceiling, chunk_size, enable_sni)
        except Exception as e:
            self._log_error("Sync run failed", e)
            if self._notifier:
                await self._notifier.notify_failure(e)
            raise

        if self._notifier:
            await self._notifier.notify_success(result)
        return result

    def sync(self, **kwargs) -> SyncResult:
        """Synchronous wrapper around run_sync()."""
        return asyncio.run(self.run_sync(**kwargs))

    async def _run(
        self,
        allowlist_urls: Optional[Sequence[str]],
        blocklist_urls: Optional[Sequence[str]],
        ceiling: Optional[int],
        chunk_size: Optional[int],
        enable_sni: Optional[bool],
    ) -> SyncResult:
        sync_config = self._config.sync
        chunk_size = sync_config.chunk_size if chunk_size is None else chunk_size
        enable_sni = sync_config.enable_sni if enable_sni is None else enable_sni
        dry_run = self._config.simulation_mode

        reconciliation = await self.reconcile_feeds(allowlist_urls, blocklist_urls, ceiling, chunk_size)
        stats = reconciliation.stats

        if not reconciliation.domains:
            self._log_warn("No domains left to block, remote state left unchanged", stats.to_dict())
            return SyncResult(
                stats=stats,
                final_block_count=0,
                chunk_count=0,
                allowlist_size=reconciliation.allowlist_size,
                skipped=True,
                dry_run=dry_run,
            )

        partitioner = ListPartitioner(chunk_size=chunk_size, list_prefix=sync_config.list_prefix)
        rule_builder = RuleExpressionBuilder(rule_prefix=sync_config.rule_prefix)

        await self._delete_managed(partitioner, rule_builder)

        chunks = partitioner.partition(reconciliation.domains)
        for chunk in chunks:
            await self._gateway.create_list(chunk.name, chunk.domains)
            self._log_info(
                f"Created list {chunk.index}/{len(chunks)}: {chunk.name}",
                {"list": chunk.name, "items": len(chunk)},
            )

        list_ids = self._resolve_list_ids(await self._gateway.list_lists(), [c.name for c in chunks])
        rule_names = await self._upsert_rules(rule_builder.build_rules(list_ids, enable_sni))

        self._log_info(
            "Sync finished",
            {**stats.to_dict(), "lists": len(chunks), "rules": rule_names, "dry_run": dry_run},
        )
        return SyncResult(
            stats=stats,
            final_block_count=len(reconciliation.domains),
            chunk_count=len(chunks),
            allowlist_size=reconciliation.allowlist_size,
            list_ids=list_ids,
            rules=rule_names,
            dry_run=dry_run,
        )

    async def _delete_managed(
        self, partitioner: ListPartitioner, rule_builder: RuleExpressionBuilder
    ) -> None:
        """Delete the managed rules, then the managed lists they reference."""
        rules, lists = await asyncio.gather(self._gateway.list_rules(), self._gateway.list_lists())

        managed_rule_names = rule_builder.managed_rule_names()
        for rule in rules:
            if rule.name in managed_rule_names:
                await self._gateway.delete_rule(rule.id)
                self._log_info(f"Deleted rule {rule.name}", {"rule_id": rule.id})

        managed_lists = [remote for remote in lists if partitioner.is_managed(remote.name)]
        for number, remote in enumerate(managed_lists, start=1):
            await self._gateway.delete_list(remote.id)
            self._log_info(
                f"Deleted list {number}/{len(managed_lists)}: {remote.name}",
                {"list_id": remote.id},
            )

    def _resolve_list_ids(self, remote_lists: Sequence[RemoteList], chunk_names: Sequence[str]) -> list[str]:
        """
        Map chunk names to remote ids, in chunk order.

        Raises:
            GatewayError: If a created list is missing from the listing; a rule
                built without it would leave those domains unblocked
        """
        ids_by_name = {remote.name: remote.id for remote in remote_lists}
        missing = [name for name in chunk_names if name not in ids_by_name]
        if missing:
            raise GatewayError(
                code=GatewayErrorCode.NOT_FOUND.value,
                message=f"{len(missing)} created lists not reported by the gateway",
                details={"operation": "list_lists", "missing": missing},
            )
        return [ids_by_name[name] for name in chunk_names]

    async def _upsert_rules(self, definitions) -> list[str]:
        """Create or update each rule definition by name."""
        if not definitions:
            return []

        existing: dict[str, RemoteRule] = {rule.name: rule for rule in await self._gateway.list_rules()}
        names = []
        for definition in definitions:
            current = existing.get(definition.name)
            if current is not None:
                await self._gateway.update_rule(
                    current.id, definition.name, definition.expression, definition.filters
                )
                self._log_info(f"Updated rule {definition.name}", {"rule_id": current.id})
            else:
                created = await self._gateway.create_rule(
                    definition.name, definition.expression, definition.filters
                )
                self._log_info(f"Created rule {definition.name}", {"rule_id": created.id})
            names.append(definition.name)
        return names

    # Logging helpers

    def _log_debug(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.DEBUG, "SyncOrchestrator", message, data)

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, "SyncOrchestrator", message, data)

    def _log_warn(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.WARN, "SyncOrchestrator", message, data)

    def _log_error(self, message: str, error: Exception) -> None:
        if self._logger:
            self._logger.log_error("SyncOrchestrator", message, error)
