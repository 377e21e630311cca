#!/usr/bin/env python3
"""
Delivery queue maintenance from a shell

Run from the project root:
    python scripts/queue_admin.py stats
    python scripts/queue_admin.py process --limit 20
    python scripts/queue_admin.py pause | resume
    python scripts/queue_admin.py retry 42
    python scripts/queue_admin.py cleanup --days 30
"""
import sys
import asyncio
import argparse
from pathlib import Path

# Make the app package importable when run as a file
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.core.exceptions import AppException  # noqa: E402
from app.db.database import AsyncSessionLocal, engine  # noqa: E402
from app.domain.services.delivery_queue_service import DeliveryQueueService  # noqa: E402
from app.domain.services.system_settings_service import SystemSettingsService  # noqa: E402


class Colors:
    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def print_kv(title: str, values: dict) -> None:
    print(f"\n{Colors.BOLD}{title}{Colors.RESET}")
    for key, value in values.items():
        print(f"  {key:<12} {value}")


async def cmd_stats(args) -> int:
    async with AsyncSessionLocal() as db:
        stats = await DeliveryQueueService(db).get_stats()
        enabled = await SystemSettingsService(db).is_queue_processing_enabled()
    print_kv("Queue", {
        "processing": "enabled" if enabled else f"{Colors.YELLOW}paused{Colors.RESET}",
        "pending": stats.pending,
        "in flight": stats.processing,
        "completed": stats.completed,
        "failed": stats.failed,
        "total": stats.total,
    })
    return 0


async def cmd_process(args) -> int:
    async with AsyncSessionLocal() as db:
        result = await DeliveryQueueService(db).process_batch(args.limit)
    if result.paused:
        print(f"{Colors.YELLOW}Queue processing is paused, nothing done{Colors.RESET}")
        return 0
    print_kv("Batch", {
        "processed": result.processed,
        "succeeded": result.succeeded,
        "retried": result.retried,
        "failed": result.failed,
        "skipped": result.skipped,
    })
    return 0


async def cmd_toggle(args) -> int:
    enabled = args.command == "resume"
    async with AsyncSessionLocal() as db:
        await SystemSettingsService(db).set_queue_processing_enabled(enabled)
    print(f"{Colors.GREEN}Queue processing {'resumed' if enabled else 'paused'}{Colors.RESET}")
    return 0


async def cmd_retry(args) -> int:
    async with AsyncSessionLocal() as db:
        result = await DeliveryQueueService(db).bulk_action(args.ids, "retry")
    print_kv("Retry", {"successful": result.successful, "failed": result.failed})
    for error in result.errors:
        print(f"  {Colors.RED}#{error['id']}: {error['error']}{Colors.RESET}")
    return 0 if result.failed == 0 else 1


async def cmd_cleanup(args) -> int:
    async with AsyncSessionLocal() as db:
        deleted = await DeliveryQueueService(db).cleanup_completed(args.days)
    print(f"{Colors.GREEN}Removed {deleted} completed deliveries{Colors.RESET}")
    return 0


COMMANDS = {
    "stats": cmd_stats,
    "process": cmd_process,
    "pause": cmd_toggle,
    "resume": cmd_toggle,
    "retry": cmd_retry,
    "cleanup": cmd_cleanup,
}


async def run(args) -> int:
    try:
        return await COMMANDS[args.command](args)
    except AppException as e:
        print(f"{Colors.RED}{e.error_code.value}: {e.message}{Colors.RESET}")
        return 1
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Delivery queue maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Counts per status and the pause switch")

    process = sub.add_parser("process", help="Dispatch one batch now")
    process.add_argument("--limit", type=int, default=None, help="Batch size (default QUEUE_BATCH_SIZE)")

    sub.add_parser("pause", help="Stop pulling new batches")
    sub.add_parser("resume", help="Resume pulling batches")

    retry = sub.add_parser("retry", help="Move failed deliveries back to pending")
    retry.add_argument("ids", type=int, nargs="+")

    cleanup = sub.add_parser("cleanup", help="Delete old completed deliveries")
    cleanup.add_argument("--days", type=int, default=None, help="Age in days (default COMPLETED_DELIVERY_RETENTION_DAYS)")

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
