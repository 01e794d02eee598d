# tests/unit/test_models.py
"""Unit tests for tiers, timestamps and report types."""

from datetime import UTC, datetime, timedelta, timezone

from snapshot_service.models import (
    AggregateStats,
    BulkOutcome,
    BulkSummary,
    RetentionTier,
    SnapshotStats,
    ViewQuery,
    WriteOutcome,
    expires_at_for,
    format_timestamp,
    parse_timestamp,
)


class TestRetentionTier:
    def test_scheduled_excludes_manual(self):
        assert RetentionTier.MANUAL not in RetentionTier.scheduled()
        assert len(RetentionTier.scheduled()) == 5

    def test_default_retention(self):
        assert RetentionTier.GRANULAR.default_retention == timedelta(hours=4)
        assert RetentionTier.MONTHLY.default_retention == timedelta(days=365)
        assert RetentionTier.MANUAL.default_retention is None


class TestTimestamps:
    def test_format_millisecond_utc(self):
        dt = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=UTC)

        assert format_timestamp(dt) == "2024-05-01T12:00:00.123Z"

    def test_format_converts_to_utc(self):
        dt = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        assert format_timestamp(dt) == "2024-05-01T12:00:00.000Z"

    def test_parse(self):
        assert parse_timestamp("2024-05-01T12:00:00.000Z") == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def test_parse_invalid(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(12345) is None

    def test_expires_at_for(self):
        created = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

        assert expires_at_for("hourly", created) == "2024-05-02T12:00:00.000Z"
        assert expires_at_for(RetentionTier.MANUAL, created) is None


class TestOutcomes:
    def test_write_outcome_succeeded(self):
        assert WriteOutcome.CREATED.succeeded
        assert not WriteOutcome.CONFLICT.succeeded

    def test_bulk_summary(self):
        summary = BulkSummary.from_outcomes(
            [BulkOutcome(id="a", ok=True, rev="2-x"), BulkOutcome(id="b", ok=False, error="conflict")]
        )

        assert (summary.submitted, summary.succeeded, summary.failed) == (2, 1, 1)
        assert summary.failed_ids == ["b"]


class TestViewQuery:
    def test_only_set_options_are_sent(self):
        assert ViewQuery().to_params() == {}

    def test_params(self):
        params = ViewQuery(start_key=["s"], end_key=["s", {}], include_docs=True, group_level=1).to_params()

        assert params == {"startkey": ["s"], "endkey": ["s", {}], "include_docs": True, "group_level": 1}


class TestAggregateStats:
    def test_merges_by_addition(self):
        stats = AggregateStats(total_databases=2)
        stats.add("a", SnapshotStats(total=3, by_tier={"granular": 3}))
        stats.add("b", SnapshotStats(total=2, by_tier={"granular": 1, "legacy": 1}))

        assert stats.total_snapshots == 5
        assert stats.by_tier["granular"] == 4
        assert stats.by_tier["legacy"] == 1
        assert stats.by_tier["manual"] == 0
