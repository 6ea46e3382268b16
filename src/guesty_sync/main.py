"""Main entry point for the Guesty listings sync."""

import argparse
import asyncio
import logging
import sys

from guesty_sync.config import Settings
from guesty_sync.db import SqlitePropertyStore
from guesty_sync.errors import AuthError, FetchError
from guesty_sync.logging import configure_logging, get_logger
from guesty_sync.models import SyncReport, SyncStatus
from guesty_sync.reconcile import ActionKind
from guesty_sync.sync import SyncPreview, SyncRunner
from guesty_sync.utils.image_cache import ImageCache

logger = get_logger(__name__)


def _print_report(report: SyncReport) -> None:
    print(f"\n{'=' * 60}")
    print(f"Sync {report.status.value}")
    print(f"{'=' * 60}\n")
    if report.error:
        print(f"  Error: {report.error}")
        return
    print(f"  Created:     {report.created}")
    print(f"  Updated:     {report.updated}")
    print(f"  Unchanged:   {report.unchanged}")
    print(f"  Reactivated: {report.reactivated}")
    print(f"  Retired:     {report.retired}")
    print(f"  Skipped:     {report.skipped}")
    for drop in report.drops:
        print(f"    - entry #{drop.index}: {drop.reason}")
    if report.errors:
        print(f"  Errors:      {len(report.errors)}")
        for error in report.errors:
            print(f"    - {error}")
    print()


def _print_preview(preview: SyncPreview) -> None:
    print(f"\n{'=' * 60}")
    print("[DRY RUN] Planned changes:")
    print(f"{'=' * 60}\n")
    for kind in (ActionKind.CREATE, ActionKind.UPDATE, ActionKind.REACTIVATE, ActionKind.RETIRE):
        actions = preview.plan.of_kind(kind)
        print(f"  {kind.value}: {len(actions)}")
        for action in actions:
            title = action.remote.title if action.remote else ""
            print(f"    - {action.external_id} {title}".rstrip())
    print(f"  unchanged: {preview.plan.count(ActionKind.UNCHANGED)}")
    if preview.drops:
        print(f"  dropped entries: {len(preview.drops)}")
        for drop in preview.drops:
            print(f"    - entry #{drop.index}: {drop.reason}")
    print()


async def run_sync(settings: Settings) -> SyncReport:
    """Run a single sync cycle against the configured database.

    Args:
        settings: Application settings.

    Returns:
        The cycle's report.
    """
    image_cache = ImageCache(settings.data_dir)
    store = SqlitePropertyStore(settings.database_path, image_cache=image_cache)
    await store.initialize()
    runner = SyncRunner.from_settings(settings, store, run_recorder=store)

    try:
        return await runner.run_sync_cycle()
    finally:
        await runner.close()
        await image_cache.close()
        await store.close()


async def run_dry_run(settings: Settings) -> SyncPreview:
    """Fetch the catalog and compute the plan without writing anything.

    Args:
        settings: Application settings.
    """
    store = SqlitePropertyStore(settings.database_path)
    await store.initialize()
    runner = SyncRunner.from_settings(settings, store)

    try:
        return await runner.preview()
    finally:
        await runner.close()
        await store.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Guesty Sync - mirror Guesty listings into a local property store"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch listings and print planned changes without writing",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start web server with background sync scheduler",
    )
    parser.add_argument(
        "--no-sync",
        action="store_true",
        help="With --serve: start web server only, skip background sync",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines instead of console output",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    configure_logging(json_output=args.json_logs, level=log_level)

    try:
        settings = Settings()
    except Exception as e:
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Make sure you have a .env file with required settings.")
        print("Required: GUESTY_SYNC_CLIENT_ID, GUESTY_SYNC_CLIENT_SECRET")
        sys.exit(1)

    logger.info(
        "starting_guesty_sync",
        api_base_url=settings.api_base_url,
        database_path=settings.database_path,
        dry_run=args.dry_run,
        serve=args.serve,
    )

    if args.serve:
        import uvicorn

        from guesty_sync.web.app import create_app

        app = create_app(
            settings, run_sync=not args.no_sync, json_logs=args.json_logs, log_level=log_level
        )
        uvicorn.run(
            app,
            host=settings.web_host,
            port=settings.web_port,
            log_level=logging.getLevelName(log_level).lower(),
        )
    elif args.dry_run:
        try:
            preview = asyncio.run(run_dry_run(settings))
        except (AuthError, FetchError) as e:
            logger.error("dry_run_failed", error=str(e))
            print(f"Error: {e}")
            sys.exit(1)
        _print_preview(preview)
    else:
        report = asyncio.run(run_sync(settings))
        _print_report(report)
        if report.status == SyncStatus.FAILED:
            sys.exit(1)


if __name__ == "__main__":
    main()
