# snapshot_service/services/snapshot_creator.py
"""
Outbound snapshot creation requests.

Capturing snapshot content (diffing a story, idle detection, deciding whether
anything changed) belongs to an external creator. This service only decides
*when* creation should be attempted and asks the creator once per tenant
database and tier.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from snapshot_service.config import Settings
from snapshot_service.errors import SnapshotCreationError
from snapshot_service.models import RetentionTier
from snapshot_service.services.fan_out import fan_out
from snapshot_service.store.base import DocumentStore

logger = logging.getLogger(__name__)


class SnapshotCreator(ABC):
    """
    Abstract interface for the external snapshot producer.

    Implementations create zero or more snapshot documents of `tier` in
    `database` and return how many were created. Whether a request is a
    no-op is the creator's decision.
    """

    @abstractmethod
    def create_snapshots(self, database: str, tier: RetentionTier) -> int:
        """
        Request snapshot creation at `tier` for every story in `database`.

        Raises:
            SnapshotCreationError: if the creator rejects or fails the request
        """
        pass

    def close(self) -> None:
        """Clean up resources (close HTTP client, etc.)."""
        pass


class HttpSnapshotCreator(SnapshotCreator):
    """
    Send creation requests to an HTTP endpoint.

    Request: POST {url} with JSON
        {"database", "tier", "idleThresholdMinutes", "maxSnapshotsPerStory", "retentionSeconds"}
    Response: any 2xx; an optional {"created": n} body is reported back.
    """

    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        url: str,
        idle_threshold_minutes: int = 5,
        max_snapshots_per_story: int = 500,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.idle_threshold_minutes = idle_threshold_minutes
        self.max_snapshots_per_story = max_snapshots_per_story
        self.client = httpx.Client(
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpSnapshotCreator | None":
        """Creator configured from settings, or None when no URL is set."""
        if not settings.SNAPSHOT_CREATOR_URL:
            return None
        return cls(
            url=settings.SNAPSHOT_CREATOR_URL,
            idle_threshold_minutes=settings.IDLE_THRESHOLD_MINUTES,
            max_snapshots_per_story=settings.MAX_SNAPSHOTS_PER_STORY,
        )

    def create_snapshots(self, database: str, tier: RetentionTier) -> int:
        tier = RetentionTier(tier)
        retention = tier.default_retention
        payload = {
            "database": database,
            "tier": tier.value,
            "idleThresholdMinutes": self.idle_threshold_minutes,
            "maxSnapshotsPerStory": self.max_snapshots_per_story,
            "retentionSeconds": int(retention.total_seconds()) if retention else None,
        }

        try:
            response = self.client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise SnapshotCreationError(database, tier.value, f"request failed: {e}") from e

        if not response.is_success:
            raise SnapshotCreationError(database, tier.value, f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError:
            return 0
        return int(body.get("created", 0)) if isinstance(body, dict) else 0

    def close(self) -> None:
        self.client.close()


def create_snapshots_for_all_databases(
    store: DocumentStore,
    creator: SnapshotCreator,
    tier: RetentionTier,
    max_workers: int = 10,
) -> int:
    """
    Ask the creator for `tier` snapshots in every tenant database.

    Per-database failures are logged and skipped. Returns the total created.

    Raises:
        StoreConnectionError: if the database list cannot be fetched
    """
    tier = RetentionTier(tier)
    databases = store.list_tenant_databases()

    result = fan_out(
        databases,
        lambda db_name: creator.create_snapshots(db_name, tier),
        operation=f"create_{tier.value}_snapshots",
        max_workers=max_workers,
    )

    created = sum(result.results.values())
    logger.info(
        f"Requested {tier.value} snapshots for {len(databases)} databases: {created} created "
        f"in {result.duration_ms}ms",
        extra={
            "event": "snapshots_requested",
            "tier": tier.value,
            "items_processed": len(databases),
            "items_failed": len(result.errors),
            "duration_ms": result.duration_ms,
        },
    )
    return created
