#!/usr/bin/env python3
"""Sync queue administration CLI.

Usage:
    python scripts/sync_admin.py stats
    python scripts/sync_admin.py process [--module crm] [--dry-run]
    python scripts/sync_admin.py dead [--limit 20]
    python scripts/sync_admin.py retry-dead [--job-id 12 --job-id 13]
    python scripts/sync_admin.py cleanup [--days 30]
    python scripts/sync_admin.py reconcile crm contact [--fix]

Runs against the database and remote configured in the environment or
.env file. ``process`` is the entry point for cron-driven deployments
that set SYNC_WORKER_ENABLED=false.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.erpsync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(args: argparse.Namespace) -> int:
    from src.erpsync.config import get_settings
    from src.erpsync.core.database import close_db, init_db
    from src.erpsync.core.logging import configure_structlog
    from src.erpsync.core.redis import close_redis
    from src.erpsync.runtime import build_runtime

    settings = get_settings()
    if getattr(args, "dry_run", False):
        settings.SYNC_DRY_RUN = True
    configure_structlog()
    await init_db()
    runtime = build_runtime(settings)
    queue = runtime.sync_queue

    try:
        if args.command == "stats":
            stats = await queue.stats()
            for name, count in stats.model_dump().items():
                print(f"  {name:10s} {count}")
            print(f"  {'total':10s} {stats.total}")
        elif args.command == "process":
            report = await runtime.sync_worker.process_queue(args.module)
            print(report.model_dump_json(indent=2))
        elif args.command == "dead":
            for job in await queue.list_dead(limit=args.limit, module=args.module):
                print(
                    f"  #{job.id:<6d} {job.module}/{job.entity_type} {job.direction.value} "
                    f"{job.action.value} local={job.local_id or '-'} remote={job.remote_id or '-'}: "
                    f"{job.last_error}"
                )
        elif args.command == "retry-dead":
            count = await queue.retry_dead(args.job_id or None)
            print(f"Re-queued {count} job(s)")
        elif args.command == "cleanup":
            count = await queue.cleanup(args.days or settings.SYNC_RETENTION_DAYS)
            print(f"Deleted {count} job(s)")
        elif args.command == "reconcile":
            module = runtime.module_registry.get(args.module)
            if module is None:
                print(f"Error: unknown module {args.module!r}")
                return 1
            report = await runtime.reconciler.reconcile(
                args.module, args.entity_type, module.get_remote_model(args.entity_type), fix=args.fix
            )
            print(report.model_dump_json(indent=2))
            if report.error:
                return 1
    finally:
        await runtime.close()
        await close_redis()
        await close_db()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync queue administration")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Job counts per status")

    process = sub.add_parser("process", help="Run one queue pass")
    process.add_argument("--module", help="Only process this module's jobs")
    process.add_argument("--dry-run", action="store_true", help="Log and acknowledge without syncing")

    dead = sub.add_parser("dead", help="List dead-lettered jobs")
    dead.add_argument("--limit", type=int, default=50)
    dead.add_argument("--module")

    retry = sub.add_parser("retry-dead", help="Re-queue dead jobs")
    retry.add_argument("--job-id", type=int, action="append", help="Job id (repeatable); default all")

    cleanup = sub.add_parser("cleanup", help="Delete old finished jobs")
    cleanup.add_argument("--days", type=int, help="Default: SYNC_RETENTION_DAYS")

    reconcile = sub.add_parser("reconcile", help="Find mappings whose remote record is gone")
    reconcile.add_argument("module")
    reconcile.add_argument("entity_type")
    reconcile.add_argument("--fix", action="store_true", help="Remove orphaned mappings")

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
