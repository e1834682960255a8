"""Command line trigger for sync cycles and outbox maintenance.

Examples:
    tasksync-sync run
    tasksync-sync status
    tasksync-sync requeue 42
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys

from tasksync.db.session import SessionLocal, create_tables
from tasksync.services.outbox import OutboxQueue
from tasksync.services.remote import RemoteClient
from tasksync.services.sync_config import load_sync_config
from tasksync.services.sync_service import SyncDispatcher

EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_OFFLINE = 2
EXIT_NOT_FOUND = 3


async def run_cycle(*, skip_probe: bool = False) -> int:
    """Run one cycle against the configured remote and print the result."""
    config = load_sync_config()
    remote = RemoteClient(config)
    try:
        with SessionLocal() as db:
            dispatcher = SyncDispatcher(db, remote, config)
            if not skip_probe and not await dispatcher.check_connectivity():
                print("[sync] remote unreachable; not syncing", file=sys.stderr)
                return EXIT_OFFLINE
            result = await dispatcher.sync()
    finally:
        await remote.close()

    print(
        json.dumps(
            {
                "success": result.success,
                "synced_items": result.synced_items,
                "failed_items": result.failed_items,
                "errors": [
                    {
                        "record_id": issue.record_id,
                        "operation": issue.operation,
                        "message": issue.message,
                        "timestamp": issue.timestamp.isoformat(),
                    }
                    for issue in result.errors
                ],
            },
            indent=2,
        )
    )
    return EXIT_OK if result.success else EXIT_SYNC_FAILED


def show_status() -> int:
    """Print queue depth counters."""
    with SessionLocal() as db:
        queue = OutboxQueue(db)
        print(json.dumps({"pending": queue.count_pending(), "dead": queue.count_dead()}))
    return EXIT_OK


def requeue(entry_id: int) -> int:
    """Requeue a dead or quarantined entry."""
    with SessionLocal() as db:
        entry = OutboxQueue(db).requeue(entry_id)
        if entry is None:
            print(f"[sync] no dead or quarantined entry {entry_id}", file=sys.stderr)
            return EXIT_NOT_FOUND
        print(f"[sync] requeued entry {entry.id} for task {entry.record_id}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Drive the tasksync outbox from the shell")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="Run one sync cycle")
    run_parser.add_argument(
        "--skip-probe",
        action="store_true",
        help="Do not check /health before sending batches.",
    )
    sub.add_parser("status", help="Show outbox counters")
    requeue_parser = sub.add_parser("requeue", help="Requeue a dead or quarantined entry")
    requeue_parser.add_argument("entry_id", type=int)

    args = parser.parse_args(argv)
    create_tables()

    if args.command == "run":
        return asyncio.run(run_cycle(skip_probe=args.skip_probe))
    if args.command == "status":
        return show_status()
    return requeue(args.entry_id)


if __name__ == "__main__":
    raise SystemExit(main())
