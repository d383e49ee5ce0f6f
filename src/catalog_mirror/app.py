"""Command-line entry point — drive the mirror without a UI."""

import argparse
import asyncio
import logging
import sys

from catalog_mirror.config import Config
from catalog_mirror.engine import CatalogEngine
from catalog_mirror.utils.constants import APP_NAME, APP_VERSION
from catalog_mirror.utils.formatters import format_bytes


def _print_status(status):
    print(f"State:      {status.state.value}")
    print(f"Progress:   {status.download_progress}% "
          f"({status.downloaded_items}/{status.total_items})")
    print(f"Cache size: {format_bytes(status.cache_size)}")
    print(f"Updated:    {status.last_updated}")
    if status.error:
        print(f"Error:      {status.error}")


def _progress_printer():
    last = {"progress": -1}

    def on_status(status):
        if status.is_downloading and status.download_progress != last["progress"]:
            last["progress"] = status.download_progress
            print(f"\rDownloading... {status.download_progress}%", end="")

    return on_status


async def _run(engine: CatalogEngine, command: str) -> int:
    if command in ("download", "refresh"):
        unsubscribe = engine.cache.subscribe(_progress_printer())
        try:
            if command == "refresh":
                await engine.cache.refresh_cache()
            else:
                await engine.cache.start_download()
        finally:
            unsubscribe()
        print()
        _print_status(engine.cache.get_current_status())
        return 0 if engine.cache.is_ready_for_offline() else 1

    if command == "clear":
        await engine.cache.clear_cache()
        print("Cache cleared")
        return 0

    if command == "sync":
        result = await engine.sync.sync()
        print(f"Synced {result.synced_items} items, "
              f"{result.failed_items} failed")
        for error in result.errors:
            print(f"  {error}")
        return 0 if result.success else 1

    if command == "status":
        _print_status(engine.cache.get_current_status())
        metrics = engine.cache.get_cache_metrics()
        print(f"Health:     {metrics.cache_health} "
              f"({metrics.record_count} records, "
              f"{metrics.image_ref_count} images)")
        print(f"Offline:    "
              f"{'ready' if engine.cache.is_ready_for_offline() else 'not ready'}")
        return 0

    if command == "stats":
        stats = engine.store.get_stats()
        print(f"Records:         {stats['records']}")
        print(f"Favorites:       {stats['favorites']}")
        print(f"Pending changes: {stats['pending_changes']}")
        return 0

    raise ValueError(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Offline mirror and cache for the remote catalog.",
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {APP_VERSION}")
    parser.add_argument("--log-level", default=Config.LOG_LEVEL,
                        help="Logging level (default: %(default)s)")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("download", help="Download the full catalog for offline use")
    sub.add_parser("refresh", help="Clear the cache and download again")
    sub.add_parser("clear", help="Remove every cached entry")
    sub.add_parser("sync", help="Pull remote changes and push local ones")
    sub.add_parser("status", help="Show cache status and health")
    sub.add_parser("stats", help="Show local store counts")
    return parser


async def _main_async(command: str) -> int:
    engine = CatalogEngine.from_config()
    try:
        return await _run(engine, command)
    finally:
        await engine.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_main_async(args.command))


if __name__ == "__main__":
    sys.exit(main())
