"""CLI entry point for rangesync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .exceptions import RangeSyncError
from .log import LogStore, LogSyncTask, SyncMode
from .repository import RepositoryClient, RepositoryRegistry, RepositoryReplicationTask

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


# ==================== Wiring ====================


def open_log_stores(config: Config) -> dict[str, LogStore]:
    """Open one store per configured log channel."""
    stores = {}
    for channel in config.logs:
        store = LogStore(config.log_db_path(channel), name=channel.name, max_events=channel.max_events)
        store.connect()
        stores[channel.name] = store
    return stores


def close_log_stores(stores: dict[str, LogStore]) -> None:
    for store in stores.values():
        store.close()


def build_sync_tasks(
    config: Config,
    stores: dict[str, LogStore],
    channels: list[str] | None = None,
    data_mode: SyncMode | None = None,
) -> list[LogSyncTask]:
    """Create one sync task per channel to synchronize."""
    names = channels or config.sync.channels or list(stores)
    return [
        LogSyncTask(
            stores[name],
            remote_url=config.sync.remote_url or None,
            log_name=name,
            name=f"{config.node.name}/{name}",
            data_mode=data_mode or config.sync.data_sync_mode,
            lowest_id_mode=config.sync.lowest_id_sync_mode,
            target_id=config.sync.target_id,
            timeout=config.sync.timeout_seconds,
            max_retries=config.sync.retry_max_attempts,
        )
        for name in names
    ]


def build_replication_task(config: Config, registry: RepositoryRegistry) -> RepositoryReplicationTask:
    return RepositoryReplicationTask(
        registry,
        remote_url=config.replication.remote_url or None,
        timeout=config.replication.timeout_seconds,
        max_retries=config.replication.retry_max_attempts,
    )


# ==================== Commands ====================


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the server plus the configured sync and replication loops."""
    import uvicorn

    from .server import create_app

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port

    stores = open_log_stores(config)
    registry = RepositoryRegistry.from_config(config.repositories, config.node.data_dir)

    sync_tasks = build_sync_tasks(config, stores) if config.sync.enabled else []
    replication = build_replication_task(config, registry) if config.replication.enabled else None

    app = create_app(config, stores, registry, sync_tasks=sync_tasks, replication=replication)

    print(f"Starting rangesync node: {config.node.name}")
    print(f"Log channels: {', '.join(stores) or 'none'}")
    print(f"Repositories: {len(registry)}")
    print(f"URL: http://{host}:{port}")

    stop_event = asyncio.Event()
    loops = [
        asyncio.create_task(task.run_loop(config.sync.interval_seconds, stop_event))
        for task in sync_tasks
    ]
    if replication:
        loops.append(
            asyncio.create_task(replication.run_loop(config.replication.interval_seconds, stop_event))
        )

    try:
        verbose = getattr(args, "verbose", False)
        server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_level="info" if verbose else "warning")
        )
        await server.serve()
    finally:
        stop_event.set()
        if loops:
            await asyncio.gather(*loops, return_exceptions=True)
        close_log_stores(stores)

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one log sync pass."""
    config = load_config(args.config)
    if args.remote:
        config.sync.remote_url = args.remote
    if not config.sync.remote_url:
        print("Error: no remote URL configured (sync.remote_url or --remote)", file=sys.stderr)
        return 1

    stores = open_log_stores(config)
    try:
        channels = [args.log] if args.log else None
        if args.log and args.log not in stores:
            print(f"Error: unknown log channel {args.log}", file=sys.stderr)
            return 1
        mode = SyncMode.from_string(args.mode) if args.mode else None

        exit_code = 0
        for task in build_sync_tasks(config, stores, channels, mode):
            result = await task.execute()
            print(
                f"{task.log_name}: {result.status.value} "
                f"(pushed={result.events_pushed}, pulled={result.events_pulled}, "
                f"ids pushed={result.ids_pushed}, ids pulled={result.ids_pulled})"
            )
            if result.error:
                print(f"  Error: {result.error}", file=sys.stderr)
            if not result.ok:
                exit_code = 1
        return exit_code
    finally:
        close_log_stores(stores)


async def cmd_replicate(args: argparse.Namespace) -> int:
    """Run one repository replication pass."""
    config = load_config(args.config)
    if args.remote:
        config.replication.remote_url = args.remote
    if not config.replication.remote_url:
        print("Error: no remote URL configured (replication.remote_url or --remote)", file=sys.stderr)
        return 1

    registry = RepositoryRegistry.from_config(config.repositories, config.node.data_dir)
    results = await build_replication_task(config, registry).replicate()

    exit_code = 0
    for result in results:
        fetched = ", ".join(str(v) for v in result.versions_fetched) or "none"
        print(f"{result.customer}/{result.name}: fetched {fetched}")
        if result.error:
            print(f"  Error: {result.error}", file=sys.stderr)
            exit_code = 1
    return exit_code


def cmd_append(args: argparse.Namespace) -> int:
    """Record a local event."""
    config = load_config(args.config)

    properties = {}
    for item in args.properties:
        key, sep, value = item.partition("=")
        if not sep or not key:
            print(f"Error: property must be key=value, got {item!r}", file=sys.stderr)
            return 1
        properties[key] = value

    try:
        channel = config.get_log_channel(args.log)
    except KeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    store = LogStore(config.log_db_path(channel), name=channel.name, max_events=channel.max_events)
    store.connect()
    try:
        event = store.log_event(args.target, args.store, args.type, properties)
    finally:
        store.close()

    print(event.to_representation())
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show local descriptors, watermarks and repository ranges."""
    config = load_config(args.config)

    stores = open_log_stores(config)
    try:
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "node": {"name": config.node.name, "data_dir": config.node.data_dir},
            "logs": {
                name: {
                    "stats": store.get_stats(),
                    "descriptors": [d.to_dict() for d in store.get_descriptors()],
                    "lowest_ids": [
                        {"target_id": lid.target_id, "store_id": lid.store_id, "lowest_id": lid.lowest_id}
                        for lid in store.get_lowest_ids()
                    ],
                }
                for name, store in stores.items()
            },
        }
    finally:
        close_log_stores(stores)

    registry = RepositoryRegistry.from_config(config.repositories, config.node.data_dir)
    status_data["repositories"] = [r.to_dict() for r in registry.find()]
    status_data["sync"] = {
        "enabled": config.sync.enabled,
        "remote_url": config.sync.remote_url,
        "data_mode": config.sync.data_mode,
        "lowest_id_mode": config.sync.lowest_id_mode,
    }
    status_data["replication"] = {
        "enabled": config.replication.enabled,
        "remote_url": config.replication.remote_url,
    }

    if args.json_status:
        print(json.dumps(status_data, indent=2))
        return 0

    print("rangesync Status")
    print("================")
    print(f"Node: {config.node.name}")
    print()

    for name, log in status_data["logs"].items():
        print(f"Log channel '{name}':")
        print(f"  Events: {log['stats']['total_events']} in {log['stats']['logs']} logs")
        for d in log["descriptors"]:
            print(f"    - {d['target_id']}/{d['store_id']}: {d['range'] or '(empty)'}")
        for lid in log["lowest_ids"]:
            print(f"    lowest ID {lid['target_id']}/{lid['store_id']}: {lid['lowest_id']}")
        print()

    print("Repositories:")
    if not status_data["repositories"]:
        print("  none configured")
    for repo in status_data["repositories"]:
        role = "master" if repo["master"] else "replica"
        print(f"  - {repo['customer']}/{repo['name']} ({role}): {repo['range'] or '(empty)'}")
    print()

    sync = status_data["sync"]
    print(f"Sync: {'enabled' if sync['enabled'] else 'disabled'} -> {sync['remote_url'] or 'no remote'}")
    rep = status_data["replication"]
    print(f"Replication: {'enabled' if rep['enabled'] else 'disabled'} -> {rep['remote_url'] or 'no remote'}")
    return 0


def _remote_url(args: argparse.Namespace, config: Config) -> str | None:
    return args.remote or config.replication.remote_url or config.sync.remote_url or None


async def cmd_commit(args: argparse.Namespace) -> int:
    """Commit a new version to a remote master repository."""
    config = load_config(args.config)
    remote = _remote_url(args, config)
    if not remote:
        print("Error: no remote URL (use --remote)", file=sys.stderr)
        return 1

    data = Path(args.file).read_bytes() if args.file else sys.stdin.buffer.read()

    async with RepositoryClient(remote) as client:
        try:
            committed = await client.commit(args.customer, args.name, args.version, data)
        except RangeSyncError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if committed:
        print(f"Committed version {args.version} of {args.customer}/{args.name}")
    else:
        print("Content unchanged, nothing committed")
    return 0


async def cmd_checkout(args: argparse.Namespace) -> int:
    """Check out a version from a remote repository."""
    config = load_config(args.config)
    remote = _remote_url(args, config)
    if not remote:
        print("Error: no remote URL (use --remote)", file=sys.stderr)
        return 1

    async with RepositoryClient(remote) as client:
        try:
            data = await client.checkout(args.customer, args.name, args.version)
        except RangeSyncError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if data is None:
        print(f"Version {args.version} of {args.customer}/{args.name} not found", file=sys.stderr)
        return 1

    if args.file:
        Path(args.file).write_bytes(data)
        print(f"Wrote {len(data)} bytes to {args.file}")
    else:
        sys.stdout.buffer.write(data)
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="rangesync",
        description="Event log synchronization and repository replication",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the server and sync loops")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port (default: from config)")
    serve_parser.add_argument("--host", type=str, default=None, help="Host (default: from config)")
    serve_parser.set_defaults(func=cmd_serve)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Run one log sync pass")
    sync_parser.add_argument("--log", type=str, default=None, help="Only this log channel")
    sync_parser.add_argument(
        "--mode",
        choices=[m.value for m in SyncMode if m is not SyncMode.NONE],
        default=None,
        help="Data direction (default: from config)",
    )
    sync_parser.add_argument("--remote", type=str, default=None, help="Remote base URL")
    sync_parser.set_defaults(func=cmd_sync)

    # Replicate command
    replicate_parser = subparsers.add_parser("replicate", help="Run one replication pass")
    replicate_parser.add_argument("--remote", type=str, default=None, help="Remote base URL")
    replicate_parser.set_defaults(func=cmd_replicate)

    # Append command
    append_parser = subparsers.add_parser("append", help="Record a local event")
    append_parser.add_argument("--log", type=str, default="auditlog", help="Log channel")
    append_parser.add_argument("--target", type=str, required=True, help="Target ID")
    append_parser.add_argument("--store", type=int, required=True, help="Store ID")
    append_parser.add_argument("--type", type=int, required=True, help="Event type code")
    append_parser.add_argument("properties", nargs="*", help="Event properties as key=value")
    append_parser.set_defaults(func=cmd_append)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show local state")
    status_parser.add_argument(
        "--json",
        dest="json_status",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Commit / checkout commands
    for command, func, help_text in (
        ("commit", cmd_commit, "Commit a version to a remote master"),
        ("checkout", cmd_checkout, "Check out a version from a remote"),
    ):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("--customer", type=str, required=True)
        sub.add_argument("--name", type=str, required=True)
        sub.add_argument("--version", type=int, required=True)
        sub.add_argument("--file", type=str, default=None, help="File to read/write (default: stdin/stdout)")
        sub.add_argument("--remote", type=str, default=None, help="Remote base URL")
        sub.set_defaults(func=func)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, getattr(args, "json", False))

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if asyncio.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
