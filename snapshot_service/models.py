# snapshot_service/models.py
"""
Domain types for the snapshot retention engine.

Snapshot documents themselves are owned by the external producer and flow
through the engine as plain dicts; the types here describe tiers, store
outcomes, view queries and the statistics report.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any


class RetentionTier(str, Enum):
    """Retention/creation cadence of a snapshot."""

    GRANULAR = "granular"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MANUAL = "manual"  # User-created, never expires

    @property
    def default_retention(self) -> timedelta | None:
        """How long the producer keeps a snapshot of this tier by default."""
        return TIER_RETENTION[self]

    @classmethod
    def scheduled(cls) -> list["RetentionTier"]:
        """Tiers created by the scheduler (everything except manual)."""
        return [t for t in cls if t is not cls.MANUAL]


TIER_RETENTION: dict[RetentionTier, timedelta | None] = {
    RetentionTier.GRANULAR: timedelta(hours=4),
    RetentionTier.HOURLY: timedelta(hours=24),
    RetentionTier.DAILY: timedelta(days=30),
    RetentionTier.WEEKLY: timedelta(weeks=12),
    RetentionTier.MONTHLY: timedelta(days=365),
    RetentionTier.MANUAL: None,
}


def format_timestamp(dt: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision, e.g. 2024-05-01T10:00:00.000Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; returns None if missing or malformed."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def expires_at_for(tier: RetentionTier | str, created_at: datetime) -> str | None:
    """Default expiresAt for a snapshot of `tier` created at `created_at` (None for manual)."""
    retention = RetentionTier(tier).default_retention
    if retention is None:
        return None
    return format_timestamp(created_at + retention)


# -----------------------------------------------------------------------------
# Store outcomes
# -----------------------------------------------------------------------------


class WriteOutcome(str, Enum):
    """Tagged result of a single-document or database write."""

    CREATED = "created"
    UPDATED = "updated"
    ALREADY_EXISTS = "already_exists"
    CONFLICT = "conflict"

    @property
    def succeeded(self) -> bool:
        return self in (WriteOutcome.CREATED, WriteOutcome.UPDATED)


class EnsureOutcome(str, Enum):
    """Result of ensuring the snapshot design document in one database."""

    CREATED = "created"
    UPDATED = "updated"
    ALREADY_CURRENT = "already_current"
    LOST_RACE = "lost_race"  # Another writer got there first; desired state holds


@dataclass
class BulkOutcome:
    """Outcome of one document in a bulk write."""

    id: str
    ok: bool
    rev: str | None = None
    error: str | None = None
    reason: str | None = None


@dataclass
class BulkSummary:
    """Aggregated bulk outcomes. failed > 0 is a partial failure, not an error."""

    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes: list[BulkOutcome]) -> "BulkSummary":
        failed = [o.id for o in outcomes if not o.ok]
        return cls(
            submitted=len(outcomes),
            succeeded=len(outcomes) - len(failed),
            failed=len(failed),
            failed_ids=failed,
        )


# -----------------------------------------------------------------------------
# View queries
# -----------------------------------------------------------------------------

# Collates after every string and array in CouchDB key order
MAX_KEY_SENTINEL: dict = {}

# Collates after every string sharing the preceding prefix
STRING_KEY_SENTINEL = "\ufff0"


@dataclass
class ViewQuery:
    """Options for a view query. None means 'not sent'."""

    start_key: Any = None
    end_key: Any = None
    include_docs: bool = False
    reduce: bool | None = None
    group: bool = False
    group_level: int | None = None
    inclusive_end: bool = True
    limit: int | None = None

    def to_params(self) -> dict[str, Any]:
        """Options as CouchDB query parameters (JSON values, not yet encoded)."""
        params: dict[str, Any] = {}
        if self.start_key is not None:
            params["startkey"] = self.start_key
        if self.end_key is not None:
            params["endkey"] = self.end_key
        if self.include_docs:
            params["include_docs"] = True
        if self.reduce is not None:
            params["reduce"] = self.reduce
        if self.group:
            params["group"] = True
        if self.group_level is not None:
            params["group_level"] = self.group_level
        if not self.inclusive_end:
            params["inclusive_end"] = False
        if self.limit is not None:
            params["limit"] = self.limit
        return params


@dataclass
class ViewRow:
    key: Any
    value: Any
    id: str | None = None
    doc: dict | None = None


@dataclass
class ViewResult:
    """Rows of a view query. degraded=True means the view does not exist (yet)."""

    rows: list[ViewRow] = field(default_factory=list)
    total_rows: int | None = None
    degraded: bool = False

    @classmethod
    def missing(cls) -> "ViewResult":
        return cls(rows=[], total_rows=0, degraded=True)


# -----------------------------------------------------------------------------
# Reports
# -----------------------------------------------------------------------------


def empty_tier_counts() -> dict[str, int]:
    return {tier.value: 0 for tier in RetentionTier}


@dataclass
class SnapshotStats:
    """Snapshot counts for one database."""

    total: int = 0
    by_tier: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"total": self.total, "byTier": dict(self.by_tier)}


@dataclass
class AggregateStats:
    """Snapshot counts across all tenant databases."""

    total_databases: int = 0
    total_snapshots: int = 0
    by_tier: dict[str, int] = field(default_factory=empty_tier_counts)
    by_database: dict[str, SnapshotStats] = field(default_factory=dict)
    failed_databases: list[str] = field(default_factory=list)

    def add(self, db_name: str, stats: SnapshotStats) -> None:
        self.by_database[db_name] = stats
        self.total_snapshots += stats.total
        for tier, count in stats.by_tier.items():
            self.by_tier[tier] = self.by_tier.get(tier, 0) + count

    def to_dict(self) -> dict:
        """Report shape consumed by logs and dashboards."""
        return {
            "totalDatabases": self.total_databases,
            "totalSnapshots": self.total_snapshots,
            "byTier": dict(self.by_tier),
            "byDatabase": {name: stats.to_dict() for name, stats in self.by_database.items()},
        }


@dataclass
class CleanupReport:
    """Result of one full cleanup pass (expiry, then per-story caps)."""

    dry_run: bool = False
    databases: int = 0
    expired_deleted: int = 0
    excess_deleted: int = 0
    failed_databases: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def total_deleted(self) -> int:
        return self.expired_deleted + self.excess_deleted
