import argparse
import asyncio
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from . import __version__
from .config import ConfigError, Settings, load_settings
from .env import load_env
from .errors import CatalogSyncError
from .jobs import ConflictPolicy, JobRegistry, JobRunner
from .live import Dispatcher, loop_dispatcher
from .logger import get_logger, setup_logging
from .network import RemoteSource
from .repository import ItemsRepository
from .scheduler import RefreshScheduler
from .store import ItemStore

logger = get_logger()


@dataclass
class Pipeline:
    """Everything the host needs, built once and passed by reference."""

    settings: Settings
    store: ItemStore
    remote: RemoteSource
    repository: ItemsRepository
    runner: JobRunner
    scheduler: RefreshScheduler

    def close(self) -> None:
        self.remote.close()
        self.store.close()


def build_pipeline(settings: Settings, dispatcher: Optional[Dispatcher] = None) -> Pipeline:
    """
    Wire store, remote source, repository and scheduler together.

    Raises:
        PersistenceError: If the cache database cannot be opened
    """
    store = ItemStore.open(settings.db_path, dispatcher=dispatcher)
    remote = RemoteSource(settings.api_url, timeout=settings.request_timeout)
    repository = ItemsRepository(store, remote)
    runner = JobRunner(JobRegistry(store.engine, backoff=settings.backoff_policy()))
    scheduler = RefreshScheduler(runner, repository)
    return Pipeline(
        settings=settings,
        store=store,
        remote=remote,
        repository=repository,
        runner=runner,
        scheduler=scheduler,
    )


async def run_service(settings: Settings, policy: ConflictPolicy = ConflictPolicy.KEEP) -> None:
    """
    Make sure the refresh job exists, then run jobs until cancelled.

    Snapshot updates are delivered on the event loop thread.
    """
    pipeline = build_pipeline(settings, loop_dispatcher(asyncio.get_running_loop()))
    subscription = pipeline.repository.current_items.observe(
        lambda items: logger.info("Cached snapshot updated", items=len(items))
    )
    job = pipeline.scheduler.ensure_scheduled(policy)
    logger.info(
        "Refresh job ready",
        job=job.name,
        state=job.state.value,
        next_run_at=job.next_run_at.isoformat(),
    )
    try:
        await pipeline.runner.run_forever(settings.poll_interval)
    finally:
        subscription.dispose()
        pipeline.close()
        logger.log_metrics_summary()


def cmd_run(args: argparse.Namespace, settings: Settings) -> None:
    policy = ConflictPolicy.REPLACE if args.replace else ConflictPolicy.KEEP
    try:
        asyncio.run(run_service(settings, policy))
    except KeyboardInterrupt:
        print("Stopped.")
    except CatalogSyncError as e:
        raise SystemExit(f"Service failed: {e}")


def _open_pipeline(settings: Settings, action: str) -> Pipeline:
    try:
        return build_pipeline(settings)
    except CatalogSyncError as e:
        raise SystemExit(f"{action} failed: {e}")


def cmd_refresh(args: argparse.Namespace, settings: Settings) -> None:
    pipeline = _open_pipeline(settings, "Refresh")
    try:
        asyncio.run(pipeline.repository.refresh())
        count = pipeline.store.count()
    except CatalogSyncError as e:
        raise SystemExit(f"Refresh failed: {e}")
    finally:
        pipeline.close()
    print(f"Refreshed. {count} items cached in {settings.db_path}")


def cmd_list(args: argparse.Namespace, settings: Settings) -> None:
    if not settings.db_path.exists():
        print(f"Cache not found: {settings.db_path}")
        return
    pipeline = _open_pipeline(settings, "List")
    try:
        rows = pipeline.store.read_all()
    except CatalogSyncError as e:
        raise SystemExit(f"List failed: {e}")
    finally:
        pipeline.close()
    if not rows:
        print("No items in cache.")
        return
    if args.limit is not None:
        rows = rows[:args.limit]
    print(f"Found {len(rows)} items in {settings.db_path}:\n")
    for row in rows:
        print(f"Title: {row.title}")
        print(f"  URL: {row.url}")
        print(f"  Updated: {row.updated}")
        print()


def cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    if not settings.db_path.exists():
        print(f"Cache not found: {settings.db_path}")
        return
    pipeline = _open_pipeline(settings, "Status")
    try:
        job = pipeline.scheduler.job()
        count = pipeline.store.count()
    except CatalogSyncError as e:
        raise SystemExit(f"Status failed: {e}")
    finally:
        pipeline.close()
    print(f"Cached items: {count}")
    if job is None:
        print("Refresh job: absent")
        return
    print(f"Refresh job: {job.name}")
    print(f"  State: {job.state.value}")
    print(f"  Next run: {job.next_run_at.isoformat(timespec='seconds')} UTC")
    print(f"  Retry attempt: {job.run_attempt}")
    if job.last_outcome is not None:
        print(f"  Last outcome: {job.last_outcome.value}")
    if job.last_error:
        print(f"  Last error: {job.last_error}")


def main(argv: Optional[list] = None):
    # Load .env if present (CATALOGSYNC_API_URL, CATALOGSYNC_DB_PATH, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="catalogsync", description="Offline catalog cache with daily background refresh")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="Path to SQLite cache (default: CATALOGSYNC_DB_PATH or data/catalog.db)")

    subparsers = parser.add_subparsers(dest="command")
    run = subparsers.add_parser("run", help="Schedule the daily refresh and run jobs until interrupted")
    run.add_argument("--replace", action="store_true", help="Reset an existing refresh job instead of keeping it")
    run.set_defaults(func=cmd_run)

    ref = subparsers.add_parser("refresh", help="Refresh the cache once, now")
    ref.set_defaults(func=cmd_refresh)

    lst = subparsers.add_parser("list", help="List cached items")
    lst.add_argument("--limit", type=int, help="Show at most this many items")
    lst.set_defaults(func=cmd_list)

    sts = subparsers.add_parser("status", help="Show refresh job state")
    sts.set_defaults(func=cmd_status)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    try:
        settings = load_settings()
    except ConfigError as e:
        raise SystemExit(f"Invalid configuration: {e}")
    if args.db:
        settings = replace(settings, db_path=Path(args.db))
    setup_logging(level=settings.log_level, log_dir=settings.log_dir)

    if hasattr(args, "func"):
        args.func(args, settings)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
