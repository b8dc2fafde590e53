"""
Command-line interface for the gateway sync system.

This module provides the main CLI entry point with commands for:
- sync: Download feeds, reconcile and replace the managed gateway lists/rules
- preview: Download and reconcile only, optionally writing the final list
- config: Configuration management

Configuration comes from a JSON file (--config) or from environment
variables, optionally read from a .env file.
"""

import argparse
import asyncio
import json
import os
import re
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values, find_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    DEFAULT_API_HOST,
    DEFAULT_CEILING,
    DEFAULT_CHUNK_SIZE,
    RECOMMENDED_ALLOWLIST_URLS,
    RECOMMENDED_BLOCKLIST_URLS,
    FeedConfig,
    GatewayConfig,
    LoggingConfig,
    NotificationConfig,
    RateLimitConfig,
    RateLimitRule,
    RetryConfig,
    SyncConfig,
    SystemConfig,
    TelegramConfig,
    WebhookConfig,
)
from .enums import ConfigErrorCode
from .exceptions import ConfigurationError, GatewaySyncError
from .feed_source import HTTPFeedSource
from .gateway_client import CloudflareGatewayClient
from .models import ReconciliationResult, SyncResult
from .notifications import NotificationRouter, TelegramChannel, WebhookChannel
from .orchestrator import SyncOrchestrator


DEFAULT_CONFIG_PATH = Path.home() / ".gateway_sync" / "config.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def default_rate_limits() -> RateLimitConfig:
    """Cloudflare's account-wide limit of 1200 requests per 5 minutes."""
    return RateLimitConfig(
        global_limit=RateLimitRule(
            max_requests=1200,
            window_seconds=300.0,
        ),
    )


def parse_url_list(value: Optional[str]) -> list[str]:
    """Split a newline, comma or whitespace separated URL list."""
    if not value:
        return []
    seen: dict[str, None] = {}
    for url in re.split(r"[\s,]+", value):
        if url and not url.startswith("#"):
            seen.setdefault(url, None)
    return list(seen)


def parse_bool(name: str, value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        code=ConfigErrorCode.INVALID_VALUE.value,
        message=f"{name} must be a boolean, got {value!r}",
        details={"variable": name},
    )


def parse_int(name: str, value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        raise ConfigurationError(
            code=ConfigErrorCode.INVALID_VALUE.value,
            message=f"{name} must be an integer, got {value!r}",
            details={"variable": name},
        ) from None


def read_environment(
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """
    Merge a .env file with the process environment.

    Variables already set in the environment win over the file. Without an
    explicit env_file, a .env in the working directory is used if present.
    """
    if env_file is None and environ is None:
        env_file = find_dotenv(usecwd=True) or None

    values: dict[str, str] = {}
    if env_file is not None:
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update(os.environ if environ is None else environ)
    return values


def load_config_from_env(
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    simulation_mode: bool = False,
) -> SystemConfig:
    """
    Build the system configuration from environment variables.

    Args:
        env_file: Optional .env file to read first
        environ: Variables to use instead of os.environ
        simulation_mode: Credentials are optional in simulation mode

    Returns:
        SystemConfig

    Raises:
        ConfigurationError: If credentials are missing or a value is malformed
    """
    env = read_environment(env_file, environ)

    def get(name: str) -> str:
        return (env.get(name) or "").strip()

    account_id = get("CLOUDFLARE_ACCOUNT_ID")
    api_token = get("CLOUDFLARE_API_TOKEN")
    if not simulation_mode and not (account_id and api_token):
        raise ConfigurationError(
            code=ConfigErrorCode.MISSING_CREDENTIALS.value,
            message="CLOUDFLARE_API_TOKEN and CLOUDFLARE_ACCOUNT_ID must be set",
        )

    notifications = NotificationConfig()
    if get("TELEGRAM_BOT_TOKEN") and get("TELEGRAM_CHAT_ID"):
        notifications.telegram = TelegramConfig(
            bot_token=get("TELEGRAM_BOT_TOKEN"),
            chat_id=get("TELEGRAM_CHAT_ID"),
        )
    if get("WEBHOOK_URL"):
        notifications.webhook = WebhookConfig(url=get("WEBHOOK_URL"))

    log_format = get("LOG_FORMAT") or "text"
    if log_format not in ("json", "text", "both"):
        raise ConfigurationError(
            code=ConfigErrorCode.INVALID_VALUE.value,
            message=f"LOG_FORMAT must be json, text or both, got {log_format!r}",
            details={"variable": "LOG_FORMAT"},
        )

    config = SystemConfig(
        gateway=GatewayConfig(
            account_id=account_id,
            api_token=api_token,
            api_host=get("CLOUDFLARE_API_HOST") or DEFAULT_API_HOST,
            block_page_enabled=parse_bool("BLOCK_PAGE_ENABLED", env.get("BLOCK_PAGE_ENABLED")),
        ),
        feeds=FeedConfig(
            allowlist_urls=parse_url_list(env.get("ALLOWLIST_URLS")) or list(RECOMMENDED_ALLOWLIST_URLS),
            blocklist_urls=parse_url_list(env.get("BLOCKLIST_URLS")) or list(RECOMMENDED_BLOCKLIST_URLS),
        ),
        sync=SyncConfig(
            ceiling=parse_int("CLOUDFLARE_LIST_ITEM_LIMIT", env.get("CLOUDFLARE_LIST_ITEM_LIMIT"), DEFAULT_CEILING),
            chunk_size=parse_int("CLOUDFLARE_LIST_ITEM_SIZE", env.get("CLOUDFLARE_LIST_ITEM_SIZE"), DEFAULT_CHUNK_SIZE),
            enable_sni=parse_bool("BLOCK_BASED_ON_SNI", env.get("BLOCK_BASED_ON_SNI")),
        ),
        rate_limits=default_rate_limits(),
        notifications=notifications,
        logging=LoggingConfig(
            level="debug" if parse_bool("DEBUG", env.get("DEBUG")) else "info",
            output_format=log_format,
        ),
        simulation_mode=simulation_mode,
    )
    _check_limits(config)
    return config


def validate_config(config: SystemConfig) -> list[str]:
    """
    Check a configuration for problems that would make a sync fail.

    Returns:
        List of human-readable problems (empty if the configuration is usable)
    """
    problems = []
    if not config.simulation_mode:
        if not config.gateway.account_id:
            problems.append("gateway.account_id is not set")
        if not config.gateway.api_token:
            problems.append("gateway.api_token is not set")
    if not config.feeds.blocklist_urls:
        problems.append("feeds.blocklist_urls is empty")
    if config.sync.chunk_size < 1:
        problems.append("sync.chunk_size must be positive")
    if config.logging.output_format not in ("json", "text", "both"):
        problems.append("logging.output_format must be json, text or both")
    return problems


def _check_limits(config: SystemConfig) -> None:
    sync = config.sync
    if sync.chunk_size < 1:
        raise ConfigurationError(
            code=ConfigErrorCode.INVALID_VALUE.value,
            message=f"CLOUDFLARE_LIST_ITEM_SIZE must be positive, got {sync.chunk_size}",
            details={"chunk_size": sync.chunk_size},
        )


def create_default_config(simulation_mode: bool = False) -> SystemConfig:
    """
    Create a default system configuration.

    Credentials are left empty and have to be filled in before a real sync.
    """
    return SystemConfig(
        gateway=GatewayConfig(account_id="", api_token=""),
        feeds=FeedConfig(
            allowlist_urls=list(RECOMMENDED_ALLOWLIST_URLS),
            blocklist_urls=list(RECOMMENDED_BLOCKLIST_URLS),
        ),
        sync=SyncConfig(),
        rate_limits=default_rate_limits(),
        retry=RetryConfig(
            max_retries=3,
            base_delay_seconds=1.0,
            max_delay_seconds=60.0,
        ),
        notifications=NotificationConfig(),
        logging=LoggingConfig(
            level="info",
            output_format="text",
        ),
        simulation_mode=simulation_mode,
    )


def _section(cls, data, **defaults):
    """Build a config dataclass from a JSON object, ignoring unknown keys."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise TypeError(f"{cls.__name__} expects an object, got {type(data).__name__}")
    names = {f.name for f in fields(cls)}
    values = dict(defaults)
    values.update((key, value) for key, value in data.items() if key in names)
    return cls(**values)


def _config_from_dict(data: dict) -> SystemConfig:
    rate_data = data.get("rate_limits") or {}
    global_limit = rate_data.get("global_limit")
    rate_limits = RateLimitConfig(
        per_endpoint={
            endpoint: _section(RateLimitRule, rule)
            for endpoint, rule in (rate_data.get("per_endpoint") or {}).items()
        },
        global_limit=_section(RateLimitRule, global_limit) if global_limit else None,
    )

    notify_data = data.get("notifications") or {}
    telegram = notify_data.get("telegram")
    webhook = notify_data.get("webhook")
    notifications = NotificationConfig(
        telegram=_section(TelegramConfig, telegram) if telegram else None,
        webhook=_section(WebhookConfig, webhook) if webhook else None,
    )
    if notifications.telegram is not None:
        notifications.telegram.chat_id = str(notifications.telegram.chat_id)

    return SystemConfig(
        gateway=_section(GatewayConfig, data.get("gateway"), account_id="", api_token=""),
        feeds=_section(FeedConfig, data.get("feeds")),
        sync=_section(SyncConfig, data.get("sync")),
        rate_limits=rate_limits,
        retry=_section(RetryConfig, data.get("retry")),
        notifications=notifications,
        logging=_section(LoggingConfig, data.get("logging")),
        simulation_mode=bool(data.get("simulation_mode", False)),
    )


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file written by save_config_to_file.

    Sections and keys that are absent take the dataclass defaults.

    Returns:
        SystemConfig, or None if the file does not exist

    Raises:
        ConfigurationError: If the file is unreadable or not a valid configuration
    """
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        raise ConfigurationError(
            code=ConfigErrorCode.INVALID_FILE.value,
            message=f"Could not read config {config_path}: {e}",
            details={"path": str(config_path)},
        ) from e

    try:
        if not isinstance(data, dict):
            raise TypeError("top level must be an object")
        return _config_from_dict(data)
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigurationError(
            code=ConfigErrorCode.INVALID_FILE.value,
            message=f"Malformed config {config_path}: {e}",
            details={"path": str(config_path)},
        ) from e


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """Write config as indented JSON, creating parent directories; False on failure."""
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(
            json.dumps(asdict(config), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False
    return True


def create_notification_router(
    config: SystemConfig,
    logger: Optional[AuditLogger] = None,
) -> Optional[NotificationRouter]:
    """
    Create a notification router from configuration.

    Returns:
        NotificationRouter if any channels are configured, None otherwise
    """
    notifications = config.notifications
    if not (notifications.telegram or notifications.webhook):
        return None

    router = NotificationRouter(retry_config=config.retry, logger=logger)

    if notifications.telegram:
        router.register_channel(TelegramChannel(
            config=notifications.telegram,
            simulation_mode=config.simulation_mode,
        ))

    if notifications.webhook:
        router.register_channel(WebhookChannel(
            config=notifications.webhook,
            simulation_mode=config.simulation_mode,
        ))

    return router


def create_logger(config: SystemConfig) -> AuditLogger:
    return AuditLogger.from_level_name(
        config.logging.level,
        output_format=config.logging.output_format,
    )


async def run_sync(
    config: SystemConfig,
    logger: Optional[AuditLogger] = None,
    notifier: Optional[NotificationRouter] = None,
) -> SyncResult:
    """Run one sync with HTTP-backed collaborators built from config."""
    async with HTTPFeedSource(
        timeout=config.feeds.timeout_seconds,
        retry_config=config.retry,
        logger=logger,
    ) as feed_source, CloudflareGatewayClient(
        config.gateway,
        rate_limits=config.rate_limits,
        retry_config=config.retry,
        logger=logger,
        simulation_mode=config.simulation_mode,
    ) as gateway:
        orchestrator = SyncOrchestrator(config, feed_source, gateway, notifier, logger)
        return await orchestrator.run_sync()


async def run_preview(config: SystemConfig, logger: Optional[AuditLogger] = None) -> ReconciliationResult:
    """Fetch and reconcile the configured feeds without touching the gateway."""
    async with HTTPFeedSource(
        timeout=config.feeds.timeout_seconds,
        retry_config=config.retry,
        logger=logger,
    ) as feed_source:
        # The gateway client is never called by reconcile_feeds()
        gateway = CloudflareGatewayClient(config.gateway, simulation_mode=True)
        orchestrator = SyncOrchestrator(config, feed_source, gateway, logger=logger)
        return await orchestrator.reconcile_feeds()


def _load_config(args: argparse.Namespace, simulation_mode: bool) -> SystemConfig:
    if args.config:
        config = load_config_from_file(Path(args.config))
        if config is None:
            raise ConfigurationError(
                code=ConfigErrorCode.INVALID_FILE.value,
                message=f"Config file not found: {args.config}",
                details={"path": args.config},
            )
        config.simulation_mode = config.simulation_mode or simulation_mode
        problems = validate_config(config)
        if problems:
            raise ConfigurationError(
                code=ConfigErrorCode.INVALID_VALUE.value,
                message="; ".join(problems),
                details={"path": args.config},
            )
        return config

    env_file = Path(args.env_file) if args.env_file else None
    return load_config_from_env(env_file=env_file, simulation_mode=simulation_mode)


def _print_stats(result: ReconciliationResult) -> None:
    stats = result.stats
    print(f"  Total processed: {stats.processed}")
    print(f"  Allowlisted:     {stats.allowed}")
    print(f"  Duplicates:      {stats.duplicate}")
    print(f"  Dropped (limit): {stats.dropped}")
    print(f"  Final blocked:   {stats.final_blocked}")


def cmd_sync(args: argparse.Namespace) -> int:
    """Handle the 'sync' command."""
    try:
        config = _load_config(args, simulation_mode=args.dry_run)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if args.sni is not None:
        config.sync.enable_sni = args.sni
    if args.verbose:
        config.logging.level = "debug"

    if config.simulation_mode:
        print("Dry run: the gateway will not be modified.")

    logger = create_logger(config)
    notifier = create_notification_router(config, logger)

    try:
        result = asyncio.run(run_sync(config, logger, notifier))
    except GatewaySyncError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if result.skipped:
        print("Nothing to block, gateway left unchanged.")
    else:
        print(f"Synced {result.final_block_count} domains into {result.chunk_count} list(s).")
        if args.verbose:
            print(f"  Rules: {', '.join(result.rules) or '-'}")
    return 0


def cmd_preview(args: argparse.Namespace) -> int:
    """Handle the 'preview' command."""
    try:
        config = _load_config(args, simulation_mode=True)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if args.verbose:
        config.logging.level = "debug"
    logger = create_logger(config)

    try:
        result = asyncio.run(run_preview(config, logger))
    except GatewaySyncError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print("Reconciliation preview:")
    _print_stats(result)

    if args.output:
        output_file = Path(args.output)
        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, "w", encoding="utf-8") as f:
                f.writelines(f"{domain}\n" for domain in result.domains)
            print(f"Final list written to: {output_file}")
        except OSError as e:
            print(f"Error writing list: {e}", file=sys.stderr)
            return 1

    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    try:
        if args.action == "show":
            config = load_config_from_file(config_path)
            if config is None:
                print(f"No configuration found at: {config_path}")
                print("Use 'config init' to create a default configuration.")
                return 1

            print(f"Configuration from: {config_path}")
            print(f"  Account: {config.gateway.account_id or '(not set)'}")
            print(f"  API token: {'(set)' if config.gateway.api_token else '(not set)'}")
            print(f"  Allowlist feeds: {len(config.feeds.allowlist_urls)}")
            print(f"  Blocklist feeds: {len(config.feeds.blocklist_urls)}")
            print(f"  Item limit: {config.sync.ceiling}")
            print(f"  List size: {config.sync.chunk_size}")
            print(f"  SNI rule: {config.sync.enable_sni}")
            print(f"  Simulation mode: {config.simulation_mode}")
            print(f"  Log level: {config.logging.level}")
            return 0

        elif args.action == "init":
            if config_path.exists() and not args.force:
                print(f"Configuration already exists at: {config_path}")
                print("Use --force to overwrite.")
                return 1

            if save_config_to_file(create_default_config(), config_path):
                print(f"Configuration created at: {config_path}")
                return 0
            return 1

        elif args.action == "validate":
            config = load_config_from_file(config_path)
            if config is None:
                print(f"Error: Could not load config from {config_path}", file=sys.stderr)
                return 1

            problems = validate_config(config)
            if problems:
                for problem in problems:
                    print(f"  - {problem}", file=sys.stderr)
                return 1

            print(f"Configuration at {config_path} is valid.")
            return 0

    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return 1


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        help="Path to JSON configuration file (default: environment variables)",
    )
    parser.add_argument(
        "--env-file", "-e",
        help="Path to .env file (default: .env in the working directory)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="gateway-sync",
        description="Sync DNS blocklists into Cloudflare Zero Trust Gateway lists and rules",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'sync' command
    sync_parser = subparsers.add_parser(
        "sync",
        help="Download feeds and replace the managed gateway lists and rules",
    )
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulation mode - feeds are downloaded, the gateway is not modified",
    )
    sni_group = sync_parser.add_mutually_exclusive_group()
    sni_group.add_argument(
        "--sni",
        dest="sni",
        action="store_true",
        default=None,
        help="Also create the SNI based filtering rule",
    )
    sni_group.add_argument(
        "--no-sni",
        dest="sni",
        action="store_false",
        help="Do not create the SNI based filtering rule",
    )
    _add_source_arguments(sync_parser)
    sync_parser.set_defaults(func=cmd_sync, sni=None)

    # 'preview' command
    preview_parser = subparsers.add_parser(
        "preview",
        help="Download and reconcile feeds without touching the gateway",
    )
    preview_parser.add_argument(
        "--output", "-o",
        help="Write the final blocklist to this file (one domain per line)",
    )
    _add_source_arguments(preview_parser)
    preview_parser.set_defaults(func=cmd_preview)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
