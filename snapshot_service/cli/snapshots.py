# snapshot_service/cli/snapshots.py
"""
CLI commands for the snapshot service.

Usage:
    python -m snapshot_service.cli.snapshots run
    python -m snapshot_service.cli.snapshots health
    python -m snapshot_service.cli.snapshots status
    python -m snapshot_service.cli.snapshots cleanup --dry-run
    python -m snapshot_service.cli.snapshots prune-story creative-writer-stories-alice story-1 --max 100
    python -m snapshot_service.cli.snapshots ensure-indexes
"""

import argparse
import signal
import sys
import threading

from dotenv import load_dotenv

load_dotenv()


def positive_int(value):
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def get_service():
    """Build a service from the environment, with logging configured."""
    from snapshot_service.config import get_settings
    from snapshot_service.logging_config import configure_logging
    from snapshot_service.service import SnapshotService

    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
    return SnapshotService(settings)


def cmd_run(args):
    """Start the service and block until SIGINT/SIGTERM."""
    from snapshot_service.errors import StoreConnectionError

    service = get_service()
    stop = threading.Event()

    def handle_signal(signum, frame):
        stop.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        service.startup()
    except StoreConnectionError as e:
        print(f"Startup failed: {e}", file=sys.stderr)
        service.shutdown()
        sys.exit(1)

    stop.wait()
    service.shutdown()


def cmd_health(args):
    """Ping the store."""
    service = get_service()
    try:
        healthy = service.healthy()
    finally:
        service.store.close()

    print(f"Health check: {'OK' if healthy else 'FAILED'}")
    if not healthy:
        sys.exit(1)


def cmd_status(args):
    """Show snapshot statistics across all tenant databases."""
    service = get_service()
    try:
        stats = service.retention_manager.get_all_snapshot_stats()
    finally:
        service.store.close()

    print("\n=== Snapshot Status ===\n")
    print(f"Databases: {stats.total_databases}")
    print(f"Total Snapshots: {stats.total_snapshots}")

    print("\nBy Tier:")
    for tier, count in stats.by_tier.items():
        print(f"  {tier}: {count}")

    if stats.by_database:
        print("\nBy Database:")
        for db_name, db_stats in sorted(stats.by_database.items()):
            print(f"  {db_name}: {db_stats.total}")

    if stats.failed_databases:
        print("\nFailed:")
        for db_name in stats.failed_databases:
            print(f"  - {db_name}")
    print()


def cmd_cleanup(args):
    """Run one cleanup pass: expiry, then per-story caps."""
    service = get_service()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Cleaning up snapshots...\n")
        report = service.retention_manager.run_cleanup(dry_run=args.dry_run)
    finally:
        service.store.close()

    print(f"Databases: {report.databases}")
    print(f"Expired deleted: {report.expired_deleted}")
    print(f"Excess deleted: {report.excess_deleted}")
    print(f"Duration: {report.duration_ms}ms")

    if report.failed_databases:
        print("\nFailed databases:")
        for db_name in report.failed_databases:
            print(f"  - {db_name}")
        sys.exit(1)


def cmd_prune_story(args):
    """Apply the per-story cap to one story."""
    service = get_service()
    try:
        deleted = service.retention_manager.prune_excess(
            args.database,
            args.story_id,
            max_snapshots=args.max,
            dry_run=args.dry_run,
        )
    finally:
        service.store.close()

    verb = "Would delete" if args.dry_run else "Deleted"
    print(f"{verb} {deleted} excess snapshots for story {args.story_id} in {args.database}")


def cmd_ensure_indexes(args):
    """Create or update the snapshot views."""
    from snapshot_service.errors import IndexEnsureError, StoreConnectionError

    service = get_service()
    failed = False
    try:
        databases = args.databases or sorted(service.store.list_tenant_databases())
        for db_name in databases:
            try:
                outcome = service.index_manager.ensure_indexes(db_name)
                print(f"  {db_name}: {outcome.value}")
            except (IndexEnsureError, StoreConnectionError) as e:
                print(f"  {db_name}: FAILED ({e})")
                failed = True
    finally:
        service.store.close()

    if failed:
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Snapshot Service CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the scheduler (blocks)
  python -m snapshot_service.cli.snapshots run

  # Preview what a cleanup pass would delete
  python -m snapshot_service.cli.snapshots cleanup --dry-run

  # Keep only the 100 newest snapshots of one story
  python -m snapshot_service.cli.snapshots prune-story creative-writer-stories-alice story-1 --max 100
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run command
    run_parser = subparsers.add_parser("run", help="Start the service")
    run_parser.set_defaults(func=cmd_run)

    # health command
    health_parser = subparsers.add_parser("health", help="Check store connectivity")
    health_parser.set_defaults(func=cmd_health)

    # status command
    status_parser = subparsers.add_parser("status", help="Show snapshot statistics")
    status_parser.set_defaults(func=cmd_status)

    # cleanup command
    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired and excess snapshots")
    cleanup_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't delete")
    cleanup_parser.set_defaults(func=cmd_cleanup)

    # prune-story command
    prune_parser = subparsers.add_parser("prune-story", help="Apply the per-story cap to one story")
    prune_parser.add_argument("database", help="Tenant database name")
    prune_parser.add_argument("story_id", help="Story id")
    prune_parser.add_argument(
        "--max", type=positive_int, default=None, help="Snapshots to keep (default: MAX_SNAPSHOTS_PER_STORY)"
    )
    prune_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't delete")
    prune_parser.set_defaults(func=cmd_prune_story)

    # ensure-indexes command
    index_parser = subparsers.add_parser("ensure-indexes", help="Create or update snapshot views")
    index_parser.add_argument("databases", nargs="*", help="Databases (default: all tenant databases)")
    index_parser.set_defaults(func=cmd_ensure_indexes)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
