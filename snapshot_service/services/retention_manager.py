# snapshot_service/services/retention_manager.py
"""
Snapshot retention: expiry pruning, per-story caps and statistics.

Handles:
- Time-based pruning via the by_expiration view (expiresAt <= now)
- Per-story cap as a safety valve, independent of expiry
- Per-tier statistics via the by_tier view (reduce _count)
- Cross-database fan-out with per-database fault isolation

Deletes are tombstones submitted in one bulk batch. A row that fails (usually
a revision conflict because a concurrent cleanup already deleted it) is
counted and logged, never raised. Counts returned are confirmed deletions.
"""

import logging
import time
from collections import Counter
from datetime import UTC, datetime

from snapshot_service.config import Settings
from snapshot_service.constants import SnapshotDocs, ViewNames
from snapshot_service.errors import StoreConnectionError, StoreError
from snapshot_service.models import (
    MAX_KEY_SENTINEL,
    STRING_KEY_SENTINEL,
    AggregateStats,
    BulkSummary,
    CleanupReport,
    SnapshotStats,
    ViewQuery,
    ViewRow,
    format_timestamp,
    parse_timestamp,
)
from snapshot_service.services.fan_out import FanOutResult, fan_out
from snapshot_service.services.index_manager import IndexManager
from snapshot_service.store.base import DocumentStore

logger = logging.getLogger(__name__)


def _tombstone(doc: dict) -> dict:
    """Delete marker for a document: id, current revision and _deleted."""
    return {"_id": doc["_id"], "_rev": doc["_rev"], "_deleted": True}


def _created_at_sort_key(row: ViewRow) -> datetime:
    # Unparseable createdAt sorts as oldest
    created = parse_timestamp(row.key[1] if isinstance(row.key, list) and len(row.key) > 1 else None)
    return created or datetime.min.replace(tzinfo=UTC)


def _expiry_end_key(now: datetime) -> str:
    # Covers every expiresAt within the current second, with or without fraction
    return now.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S") + STRING_KEY_SENTINEL


def _is_expired(row: ViewRow, now: datetime) -> bool:
    expires_at = parse_timestamp(row.key)
    if expires_at is None:
        return isinstance(row.key, str) and row.key <= format_timestamp(now)
    return expires_at <= now


class RetentionManager:
    """
    Retention policies for all tenant databases.

    The store handle is shared by reference; nothing about tenant databases
    is cached between calls.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings,
        index_manager: IndexManager | None = None,
    ):
        self.store = store
        self.settings = settings
        self.index_manager = index_manager or IndexManager(store)

    # -------------------------------------------------------------------------
    # Bulk delete
    # -------------------------------------------------------------------------

    def _delete_documents(self, database: str, docs: list[dict], reason: str) -> BulkSummary:
        """Submit tombstones for docs in one batch and summarize the outcome."""
        outcomes = self.store.bulk_docs(database, [_tombstone(doc) for doc in docs])
        summary = BulkSummary.from_outcomes(outcomes)

        if summary.failed:
            logger.warning(
                f"{summary.failed} of {summary.submitted} {reason} deletes did not apply in {database}",
                extra={
                    "event": "partial_bulk_failure",
                    "database": database,
                    "deleted": summary.succeeded,
                    "failed": summary.failed,
                },
            )
        return summary

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    def prune_expired(self, database: str, now: datetime | None = None, dry_run: bool = False) -> int:
        """
        Delete every snapshot in `database` whose expiresAt <= now.

        Returns the number of confirmed deletions (candidates when dry_run).
        A missing view or failed query returns 0. IndexEnsureError and
        StoreConnectionError propagate to the caller's fan-out boundary.
        """
        self.index_manager.ensure_indexes(database)

        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        query = ViewQuery(end_key=_expiry_end_key(now), include_docs=True)

        try:
            result = self.store.query_view(database, SnapshotDocs.DESIGN_NAME, ViewNames.BY_EXPIRATION, query)
        except StoreConnectionError:
            raise
        except StoreError as e:
            logger.debug(f"Error querying expired snapshots in {database}: {e}")
            return 0

        if result.degraded:
            logger.warning(f"Expiration view unavailable in {database}; nothing pruned")
            return 0

        docs = [row.doc for row in result.rows if row.doc and _is_expired(row, now)]
        if not docs:
            logger.debug(f"No expired snapshots to delete in {database}")
            return 0

        if dry_run:
            logger.info(f"Would delete {len(docs)} expired snapshots in {database} (dry_run)")
            return len(docs)

        summary = self._delete_documents(database, docs, reason="expired")
        failed_note = f" ({summary.failed} failed)" if summary.failed else ""
        logger.info(
            f"Deleted {summary.succeeded} expired snapshots in {database}{failed_note}",
            extra={"event": "expired_pruned", "database": database, "deleted": summary.succeeded},
        )
        return summary.succeeded

    def prune_expired_all_databases(self, now: datetime | None = None, dry_run: bool = False) -> int:
        """
        Prune expired snapshots in every tenant database.

        Raises:
            StoreConnectionError: if the database list cannot be fetched
        """
        result = self._prune_expired_fan_out(now=now, dry_run=dry_run)
        return sum(result.results.values())

    def _prune_expired_fan_out(self, now: datetime | None, dry_run: bool) -> FanOutResult[int]:
        logger.info("Starting snapshot retention cleanup across all databases")
        now = now or datetime.now(UTC)

        databases = self.store.list_tenant_databases()
        result = fan_out(
            databases,
            lambda db_name: self.prune_expired(db_name, now=now, dry_run=dry_run),
            operation="prune_expired",
            max_workers=self.settings.BATCH_SIZE,
        )

        total = sum(result.results.values())
        failed_note = f", {len(result.errors)} databases failed" if result.errors else ""
        logger.info(
            f"Deleted {total} expired snapshots across {len(databases)} databases "
            f"in {result.duration_ms}ms{failed_note}",
            extra={
                "event": "expired_pruned_all",
                "deleted": total,
                "items_processed": len(databases),
                "items_failed": len(result.errors),
                "duration_ms": result.duration_ms,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Per-story cap
    # -------------------------------------------------------------------------

    def prune_excess(
        self,
        database: str,
        story_id: str,
        max_snapshots: int | None = None,
        dry_run: bool = False,
    ) -> int:
        """
        Keep only the `max_snapshots` most recent snapshots of `story_id`.

        Rows are stably sorted by createdAt (oldest first); ties keep index
        order. Returns confirmed deletions (candidates when dry_run); store
        errors are logged and return 0.

        Raises:
            ValueError: if the cap is below 1
        """
        limit = self._resolve_cap(max_snapshots)
        query = ViewQuery(start_key=[story_id], end_key=[story_id, MAX_KEY_SENTINEL], include_docs=True)

        try:
            result = self.store.query_view(database, SnapshotDocs.DESIGN_NAME, ViewNames.BY_STORY_AND_DATE, query)
        except StoreError as e:
            logger.error(f"Error pruning excess snapshots for story {story_id} in {database}: {e}")
            return 0

        if len(result.rows) <= limit:
            return 0

        ordered = sorted(result.rows, key=_created_at_sort_key)
        excess = [row.doc for row in ordered[: len(ordered) - limit] if row.doc]

        if dry_run:
            logger.info(f"Would prune {len(excess)} excess snapshots for story {story_id} in {database} (dry_run)")
            return len(excess)

        try:
            summary = self._delete_documents(database, excess, reason="excess")
        except StoreError as e:
            logger.error(f"Error pruning excess snapshots for story {story_id} in {database}: {e}")
            return 0

        logger.info(
            f"Pruned {summary.succeeded} excess snapshots for story {story_id} in {database}",
            extra={"event": "excess_pruned", "database": database, "deleted": summary.succeeded},
        )
        return summary.succeeded

    def _resolve_cap(self, max_snapshots: int | None) -> int:
        limit = max_snapshots if max_snapshots is not None else self.settings.MAX_SNAPSHOTS_PER_STORY
        if limit < 1:
            raise ValueError(f"max_snapshots must be at least 1, got {limit}")
        return limit

    def count_snapshots_per_story(self, database: str) -> Counter:
        """Snapshot count per storyId, from by_story_and_date keys (no docs)."""
        result = self.store.query_view(database, SnapshotDocs.DESIGN_NAME, ViewNames.BY_STORY_AND_DATE, ViewQuery())
        return Counter(row.key[0] for row in result.rows if isinstance(row.key, list) and row.key)

    def prune_excess_for_database(
        self,
        database: str,
        max_snapshots: int | None = None,
        dry_run: bool = False,
    ) -> int:
        """Apply the per-story cap to every story in `database` that exceeds it."""
        limit = self._resolve_cap(max_snapshots)
        self.index_manager.ensure_indexes(database)

        try:
            counts = self.count_snapshots_per_story(database)
        except StoreConnectionError:
            raise
        except StoreError as e:
            logger.debug(f"Error counting snapshots per story in {database}: {e}")
            return 0

        over_limit = [story_id for story_id, count in counts.items() if count > limit]
        if not over_limit:
            return 0

        logger.info(f"{len(over_limit)} stories exceed {limit} snapshots in {database}")
        return sum(self.prune_excess(database, story_id, limit, dry_run=dry_run) for story_id in over_limit)

    def prune_excess_all_databases(self, dry_run: bool = False) -> int:
        """Apply per-story caps in every tenant database."""
        return sum(self._prune_excess_fan_out(dry_run=dry_run).results.values())

    def _prune_excess_fan_out(self, dry_run: bool) -> FanOutResult[int]:
        databases = self.store.list_tenant_databases()
        result = fan_out(
            databases,
            lambda db_name: self.prune_excess_for_database(db_name, dry_run=dry_run),
            operation="prune_excess",
            max_workers=self.settings.BATCH_SIZE,
        )
        logger.info(
            f"Pruned {sum(result.results.values())} excess snapshots across {len(databases)} databases "
            f"in {result.duration_ms}ms",
            extra={"event": "excess_pruned_all", "items_failed": len(result.errors)},
        )
        return result

    # -------------------------------------------------------------------------
    # Cleanup pass
    # -------------------------------------------------------------------------

    def run_cleanup(self, now: datetime | None = None, dry_run: bool = False) -> CleanupReport:
        """
        Full cleanup: expiry first, then per-story caps.

        Raises:
            StoreConnectionError: if the database list cannot be fetched
        """
        start_time = time.time()
        expired = self._prune_expired_fan_out(now=now, dry_run=dry_run)
        excess = self._prune_excess_fan_out(dry_run=dry_run)

        report = CleanupReport(
            dry_run=dry_run,
            databases=max(expired.databases, excess.databases),
            expired_deleted=sum(expired.results.values()),
            excess_deleted=sum(excess.results.values()),
            failed_databases=sorted(set(expired.errors) | set(excess.errors)),
            duration_ms=int((time.time() - start_time) * 1000),
        )
        logger.info(
            f"Cleanup complete: {report.expired_deleted} expired, {report.excess_deleted} excess "
            f"across {report.databases} databases in {report.duration_ms}ms (dry_run={dry_run})",
            extra={
                "event": "cleanup_complete",
                "deleted": report.total_deleted,
                "items_failed": len(report.failed_databases),
                "duration_ms": report.duration_ms,
            },
        )
        return report

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_snapshot_stats(self, database: str) -> SnapshotStats:
        """
        Snapshot counts per tier for one database.

        A missing view or failed query yields zero counts, which is itself
        visible in the report.
        """
        self.index_manager.ensure_indexes(database)

        stats = SnapshotStats()
        query = ViewQuery(group_level=1)

        try:
            result = self.store.query_view(database, SnapshotDocs.DESIGN_NAME, ViewNames.BY_TIER, query)
        except StoreConnectionError:
            raise
        except StoreError as e:
            logger.debug(f"Error getting snapshot stats for {database}: {e}")
            return stats

        if result.degraded:
            logger.debug(f"Tier view missing in {database}; reporting zero snapshots")
            return stats

        for row in result.rows:
            tier = row.key[0] if isinstance(row.key, list) and row.key else row.key
            tier = tier if isinstance(tier, str) else "unknown"
            count = int(row.value or 0)
            stats.by_tier[tier] = stats.by_tier.get(tier, 0) + count
            stats.total += count
        return stats

    def get_all_snapshot_stats(self) -> AggregateStats:
        """
        Snapshot counts across all tenant databases.

        Raises:
            StoreConnectionError: if the database list cannot be fetched
        """
        databases = self.store.list_tenant_databases()
        result = fan_out(
            databases,
            self.get_snapshot_stats,
            operation="snapshot_stats",
            max_workers=self.settings.BATCH_SIZE,
        )

        stats = AggregateStats(total_databases=len(databases))
        for db_name, db_stats in result.results.items():
            stats.add(db_name, db_stats)
        stats.failed_databases = result.failed_databases
        return stats
