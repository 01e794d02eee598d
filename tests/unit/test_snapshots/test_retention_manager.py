# tests/unit/test_snapshots/test_retention_manager.py
"""Unit tests for snapshot retention: expiry, per-story caps and statistics."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from conftest import ALICE_DB, BOB_DB, NOW, PREFIX, make_settings, make_snapshot, seed

from snapshot_service.errors import StoreConnectionError, StoreError
from snapshot_service.models import MAX_KEY_SENTINEL, RetentionTier, ViewQuery, format_timestamp
from snapshot_service.services.retention_manager import RetentionManager
from snapshot_service.store.memory import MemoryStore


def _live_snapshot_ids(store, database):
    return sorted(d["_id"] for d in store.live_documents(database) if not d["_id"].startswith("_design/"))


def _second_precision(dt):
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class TestPruneExpired:
    """Tests for RetentionManager.prune_expired()."""

    def test_deletes_expired_and_keeps_the_rest(self, store, settings):
        """Three expired and two live snapshots: three deleted, then nothing."""
        expired = [make_snapshot("s1", NOW - timedelta(hours=5 + i), doc_id=f"old-{i}") for i in range(3)]
        live = [make_snapshot("s1", NOW - timedelta(hours=1), doc_id=f"new-{i}") for i in range(2)]
        seed(store, ALICE_DB, expired + live)
        manager = RetentionManager(store, settings)

        assert manager.prune_expired(ALICE_DB, now=NOW) == 3
        assert manager.prune_expired(ALICE_DB, now=NOW) == 0
        assert _live_snapshot_ids(store, ALICE_DB) == ["new-0", "new-1"]

    def test_expiry_boundary_is_inclusive(self, store, settings):
        """expiresAt == now is expired; one millisecond later is not."""
        seed(
            store,
            ALICE_DB,
            [
                make_snapshot(doc_id="at-now", expires_at=format_timestamp(NOW)),
                make_snapshot(doc_id="just-after", expires_at=format_timestamp(NOW + timedelta(milliseconds=1))),
            ],
        )

        deleted = RetentionManager(store, settings).prune_expired(ALICE_DB, now=NOW)

        assert deleted == 1
        assert _live_snapshot_ids(store, ALICE_DB) == ["just-after"]

    def test_second_precision_expiry_at_now_is_expired(self, store, settings):
        """expiresAt without fractional seconds compares by time, not by string."""
        seed(
            store,
            ALICE_DB,
            [
                make_snapshot(doc_id="at-now", expires_at=_second_precision(NOW)),
                make_snapshot(doc_id="next-second", expires_at=_second_precision(NOW + timedelta(seconds=1))),
            ],
        )

        deleted = RetentionManager(store, settings).prune_expired(ALICE_DB, now=NOW)

        assert deleted == 1
        assert _live_snapshot_ids(store, ALICE_DB) == ["next-second"]

    def test_later_millisecond_in_same_second_is_kept(self, store, settings):
        later = make_snapshot(doc_id="later", expires_at=format_timestamp(NOW + timedelta(milliseconds=500)))
        seed(store, ALICE_DB, [later])

        assert RetentionManager(store, settings).prune_expired(ALICE_DB, now=NOW) == 0

    def test_manual_snapshots_never_expire(self, store, settings):
        seed(store, ALICE_DB, [make_snapshot(tier=RetentionTier.MANUAL, created_at=NOW - timedelta(days=900))])

        assert RetentionManager(store, settings).prune_expired(ALICE_DB, now=NOW) == 0
        assert len(_live_snapshot_ids(store, ALICE_DB)) == 1

    def test_ignores_non_snapshot_documents(self, store, settings):
        doc = make_snapshot(doc_id="story-doc", expires_at=format_timestamp(NOW - timedelta(days=1)))
        doc["type"] = "story"
        seed(store, ALICE_DB, [doc])

        assert RetentionManager(store, settings).prune_expired(ALICE_DB, now=NOW) == 0

    def test_ensures_indexes_first(self, store, settings, alice_db):
        RetentionManager(store, settings).prune_expired(alice_db, now=NOW)

        assert store.get_document(alice_db, "_design/snapshots")

    def test_dry_run_deletes_nothing(self, store, settings):
        seed(store, ALICE_DB, [make_snapshot(doc_id="old", created_at=NOW - timedelta(days=1))])

        assert RetentionManager(store, settings).prune_expired(ALICE_DB, now=NOW, dry_run=True) == 1
        assert _live_snapshot_ids(store, ALICE_DB) == ["old"]

    def test_degraded_view_returns_zero(self, settings):
        mock_store = MagicMock()
        mock_store.query_view.return_value.degraded = True
        manager = RetentionManager(mock_store, settings, index_manager=MagicMock())

        assert manager.prune_expired(ALICE_DB, now=NOW) == 0
        mock_store.bulk_docs.assert_not_called()

    def test_query_error_returns_zero(self, settings):
        mock_store = MagicMock()
        mock_store.query_view.side_effect = StoreError("bad request", status_code=400)
        manager = RetentionManager(mock_store, settings, index_manager=MagicMock())

        assert manager.prune_expired(ALICE_DB, now=NOW) == 0

    def test_connection_error_propagates(self, settings):
        mock_store = MagicMock()
        mock_store.query_view.side_effect = StoreConnectionError("down")
        manager = RetentionManager(mock_store, settings, index_manager=MagicMock())

        with pytest.raises(StoreConnectionError):
            manager.prune_expired(ALICE_DB, now=NOW)

    def test_already_deleted_rows_are_not_counted(self, store, settings):
        """A concurrent cleanup deleting the same rows shows up as per-row failures only."""
        seed(store, ALICE_DB, [make_snapshot(doc_id=f"old-{i}", created_at=NOW - timedelta(days=1)) for i in range(3)])
        manager = RetentionManager(store, settings)
        manager.index_manager.ensure_indexes(ALICE_DB)

        # Snapshot the rows the other instance also sees, then let it win
        stale = store.query_view(
            ALICE_DB, "snapshots", "by_expiration", ViewQuery(end_key=format_timestamp(NOW), include_docs=True)
        )
        store.bulk_docs(ALICE_DB, [{**row.doc, "_deleted": True} for row in stale.rows[:2]])

        with patch.object(store, "query_view", return_value=stale):
            deleted = manager.prune_expired(ALICE_DB, now=NOW)

        assert deleted == 1
        assert _live_snapshot_ids(store, ALICE_DB) == []


class TestPruneExpiredAllDatabases:
    """Tests for cross-database expiry pruning."""

    def test_sums_across_tenant_databases(self, store, settings):
        seed(store, ALICE_DB, [make_snapshot(created_at=NOW - timedelta(days=1)) for _ in range(2)])
        seed(store, BOB_DB, [make_snapshot(created_at=NOW - timedelta(days=1))])
        seed(store, "_users", [])

        assert RetentionManager(store, settings).prune_expired_all_databases(now=NOW) == 3

    def test_one_failing_database_does_not_stop_the_others(self, settings):
        """Fault isolation: failed database contributes nothing, call does not raise."""
        store = MemoryStore(database_prefix=PREFIX)
        carol_db = f"{PREFIX}-carol"
        seed(store, ALICE_DB, [make_snapshot(created_at=NOW - timedelta(days=1)) for _ in range(2)])
        seed(store, BOB_DB, [make_snapshot(created_at=NOW - timedelta(days=1)) for _ in range(5)])
        seed(store, carol_db, [make_snapshot(created_at=NOW - timedelta(days=1)) for _ in range(3)])

        original = store.query_view

        def flaky_query(database, *args, **kwargs):
            if database == BOB_DB:
                raise StoreConnectionError("connection reset", database=database)
            return original(database, *args, **kwargs)

        with patch.object(store, "query_view", side_effect=flaky_query):
            total = RetentionManager(store, settings).prune_expired_all_databases(now=NOW)

        assert total == 5
        assert len(_live_snapshot_ids(store, BOB_DB)) == 5

    def test_database_listing_failure_propagates(self, settings):
        mock_store = MagicMock()
        mock_store.list_tenant_databases.side_effect = StoreConnectionError("down")

        with pytest.raises(StoreConnectionError):
            RetentionManager(mock_store, settings).prune_expired_all_databases(now=NOW)


class TestPruneExcess:
    """Tests for RetentionManager.prune_excess()."""

    def _twelve_days(self, store):
        docs = [
            make_snapshot("s1", NOW - timedelta(days=12 - day), RetentionTier.DAILY, doc_id=f"day-{day:02d}")
            for day in range(12)
        ]
        # Insert newest first so index order differs from insertion order
        seed(store, ALICE_DB, list(reversed(docs)))
        return docs

    def test_keeps_most_recent(self, store, settings):
        """Days 1..12 with a cap of 10: days 1 and 2 are deleted."""
        docs = self._twelve_days(store)
        manager = RetentionManager(store, settings)
        manager.index_manager.ensure_indexes(ALICE_DB)

        deleted = manager.prune_excess(ALICE_DB, "s1", max_snapshots=10)

        assert deleted == 2
        result = store.query_view(
            ALICE_DB,
            "snapshots",
            "by_story_and_date",
            ViewQuery(start_key=["s1"], end_key=["s1", MAX_KEY_SENTINEL]),
        )
        assert [r.id for r in result.rows] == [d["_id"] for d in docs[2:]]

    def test_under_cap_is_noop(self, store, settings):
        self._twelve_days(store)
        manager = RetentionManager(store, settings)
        manager.index_manager.ensure_indexes(ALICE_DB)

        assert manager.prune_excess(ALICE_DB, "s1", max_snapshots=12) == 0
        assert len(_live_snapshot_ids(store, ALICE_DB)) == 12

    def test_only_touches_the_given_story(self, store, settings):
        seed(store, ALICE_DB, [make_snapshot("s1", NOW - timedelta(hours=i)) for i in range(3)])
        seed(store, ALICE_DB, [make_snapshot("s2", NOW - timedelta(hours=i)) for i in range(3)])
        manager = RetentionManager(store, settings)
        manager.index_manager.ensure_indexes(ALICE_DB)

        assert manager.prune_excess(ALICE_DB, "s1", max_snapshots=1) == 2
        assert manager.count_snapshots_per_story(ALICE_DB) == {"s1": 1, "s2": 3}

    def test_defaults_to_configured_cap(self, store):
        seed(store, ALICE_DB, [make_snapshot("s1", NOW - timedelta(hours=i)) for i in range(4)])
        manager = RetentionManager(store, make_settings(MAX_SNAPSHOTS_PER_STORY=3))
        manager.index_manager.ensure_indexes(ALICE_DB)

        assert manager.prune_excess(ALICE_DB, "s1") == 1

    def test_unparseable_created_at_is_pruned_first(self, store, settings):
        broken = make_snapshot("s1", NOW, doc_id="broken")
        broken["createdAt"] = "not-a-date"
        seed(store, ALICE_DB, [broken, make_snapshot("s1", NOW - timedelta(days=3), doc_id="old")])
        manager = RetentionManager(store, settings)
        manager.index_manager.ensure_indexes(ALICE_DB)

        manager.prune_excess(ALICE_DB, "s1", max_snapshots=1)

        assert _live_snapshot_ids(store, ALICE_DB) == ["old"]

    @pytest.mark.parametrize("cap", [0, -1])
    def test_rejects_cap_below_one(self, store, settings, cap):
        seed(store, ALICE_DB, [make_snapshot("s1", NOW - timedelta(hours=i)) for i in range(3)])
        manager = RetentionManager(store, settings)
        manager.index_manager.ensure_indexes(ALICE_DB)

        with pytest.raises(ValueError):
            manager.prune_excess(ALICE_DB, "s1", max_snapshots=cap)
        with pytest.raises(ValueError):
            manager.prune_excess_for_database(ALICE_DB, max_snapshots=cap)

        assert len(_live_snapshot_ids(store, ALICE_DB)) == 3

    def test_store_error_returns_zero(self, settings):
        mock_store = MagicMock()
        mock_store.query_view.side_effect = StoreError("boom", status_code=500)

        assert RetentionManager(mock_store, settings).prune_excess(ALICE_DB, "s1", max_snapshots=1) == 0

    def test_dry_run_deletes_nothing(self, store, settings):
        self._twelve_days(store)
        manager = RetentionManager(store, settings)
        manager.index_manager.ensure_indexes(ALICE_DB)

        assert manager.prune_excess(ALICE_DB, "s1", max_snapshots=10, dry_run=True) == 2
        assert len(_live_snapshot_ids(store, ALICE_DB)) == 12


class TestPruneExcessAllDatabases:
    def test_applies_cap_to_every_story(self, store):
        seed(store, ALICE_DB, [make_snapshot("s1", NOW - timedelta(hours=i)) for i in range(5)])
        seed(store, ALICE_DB, [make_snapshot("s2", NOW - timedelta(hours=i)) for i in range(2)])
        seed(store, BOB_DB, [make_snapshot("s3", NOW - timedelta(hours=i)) for i in range(4)])
        manager = RetentionManager(store, make_settings(MAX_SNAPSHOTS_PER_STORY=2))

        assert manager.prune_excess_all_databases() == 5
        assert manager.count_snapshots_per_story(ALICE_DB) == {"s1": 2, "s2": 2}
        assert manager.count_snapshots_per_story(BOB_DB) == {"s3": 2}


class TestRunCleanup:
    def test_expiry_then_caps(self, store):
        # Two expired plus four live snapshots of one story, cap of three
        seed(store, ALICE_DB, [make_snapshot("s1", NOW - timedelta(days=2)) for _ in range(2)])
        seed(store, ALICE_DB, [make_snapshot("s1", NOW - timedelta(minutes=10 * i)) for i in range(4)])
        manager = RetentionManager(store, make_settings(MAX_SNAPSHOTS_PER_STORY=3))

        report = manager.run_cleanup(now=NOW)

        assert report.expired_deleted == 2
        assert report.excess_deleted == 1
        assert report.total_deleted == 3
        assert report.databases == 1
        assert report.failed_databases == []
        assert len(_live_snapshot_ids(store, ALICE_DB)) == 3

    def test_dry_run_report(self, store):
        seed(store, ALICE_DB, [make_snapshot("s1", NOW - timedelta(days=2))])
        manager = RetentionManager(store, make_settings())

        report = manager.run_cleanup(now=NOW, dry_run=True)

        assert report.dry_run is True
        assert report.expired_deleted == 1
        assert len(_live_snapshot_ids(store, ALICE_DB)) == 1


class TestIdempotentDeletion:
    def test_deleting_already_deleted_snapshot_reports_row_failure(self, store, settings):
        """Second tombstone for the same revision fails per row, not per call."""
        doc = make_snapshot(doc_id="gone")
        seed(store, ALICE_DB, [doc])
        current = store.get_document(ALICE_DB, "gone")
        manager = RetentionManager(store, settings)

        first = manager._delete_documents(ALICE_DB, [current], reason="expired")
        second = manager._delete_documents(ALICE_DB, [current], reason="expired")

        assert (first.succeeded, first.failed) == (1, 0)
        assert (second.succeeded, second.failed) == (0, 1)
        assert second.failed_ids == ["gone"]


class TestSnapshotStats:
    """Tests for per-tier statistics."""

    def test_counts_per_tier(self, store, settings):
        seed(store, ALICE_DB, [make_snapshot(tier=RetentionTier.GRANULAR) for _ in range(5)])
        seed(store, ALICE_DB, [make_snapshot(tier=RetentionTier.DAILY) for _ in range(2)])

        stats = RetentionManager(store, settings).get_snapshot_stats(ALICE_DB)

        assert stats.total == 7
        assert stats.by_tier == {"granular": 5, "daily": 2}

    def test_missing_view_reports_zero(self, settings):
        mock_store = MagicMock()
        mock_store.query_view.return_value.degraded = True
        manager = RetentionManager(mock_store, settings, index_manager=MagicMock())

        stats = manager.get_snapshot_stats(ALICE_DB)

        assert stats.total == 0
        assert stats.by_tier == {}

    def test_aggregates_across_databases(self, store, settings):
        """{granular:5, daily:2} + {granular:1, hourly:3} = 11 snapshots."""
        seed(store, ALICE_DB, [make_snapshot(tier=RetentionTier.GRANULAR) for _ in range(5)])
        seed(store, ALICE_DB, [make_snapshot(tier=RetentionTier.DAILY) for _ in range(2)])
        seed(store, BOB_DB, [make_snapshot(tier=RetentionTier.GRANULAR)])
        seed(store, BOB_DB, [make_snapshot(tier=RetentionTier.HOURLY) for _ in range(3)])

        stats = RetentionManager(store, settings).get_all_snapshot_stats()

        assert stats.total_databases == 2
        assert stats.total_snapshots == 11
        assert {tier: n for tier, n in stats.by_tier.items() if n} == {"granular": 6, "daily": 2, "hourly": 3}
        assert set(stats.by_tier) == {t.value for t in RetentionTier}

        report = stats.to_dict()
        assert report["totalSnapshots"] == 11
        assert report["byDatabase"][BOB_DB] == {"total": 4, "byTier": {"granular": 1, "hourly": 3}}

    def test_failed_database_is_excluded(self, store, settings):
        seed(store, ALICE_DB, [make_snapshot(tier=RetentionTier.GRANULAR)])
        seed(store, BOB_DB, [make_snapshot(tier=RetentionTier.GRANULAR)])
        original = store.query_view

        def flaky_query(database, *args, **kwargs):
            if database == BOB_DB:
                raise StoreConnectionError("timeout", database=database)
            return original(database, *args, **kwargs)

        with patch.object(store, "query_view", side_effect=flaky_query):
            stats = RetentionManager(store, settings).get_all_snapshot_stats()

        assert stats.total_snapshots == 1
        assert stats.failed_databases == [BOB_DB]
        assert BOB_DB not in stats.by_database
