# snapshot_service/service.py
"""
Service lifecycle: wiring, startup and graceful shutdown.

Startup:
1. Wait for the store (bounded retries; failure is fatal)
2. Discover tenant databases
3. Log initial statistics
4. Start the scheduler (unless SNAPSHOT_ENABLED=false)

Shutdown stops new firings, waits for in-flight actions, logs final
statistics and closes connections.
"""

import logging

from snapshot_service.config import Settings
from snapshot_service.constants import ServiceDefaults
from snapshot_service.errors import StoreConnectionError, StoreError
from snapshot_service.models import AggregateStats
from snapshot_service.resilience import with_sync_retry
from snapshot_service.services.index_manager import IndexManager
from snapshot_service.services.retention_manager import RetentionManager
from snapshot_service.services.scheduler import SnapshotScheduler
from snapshot_service.services.snapshot_creator import HttpSnapshotCreator, SnapshotCreator
from snapshot_service.store.base import DocumentStore
from snapshot_service.store.factory import create_store

logger = logging.getLogger(__name__)


class SnapshotService:
    """
    One process worth of snapshot management.

    Components are built from settings unless injected (tests pass a
    MemoryStore and a stub creator).
    """

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore | None = None,
        creator: SnapshotCreator | None = None,
        scheduler: SnapshotScheduler | None = None,
    ):
        self.settings = settings
        self.store = store or create_store(settings)
        self.creator = creator if creator is not None else HttpSnapshotCreator.from_settings(settings)
        self.index_manager = IndexManager(self.store)
        self.retention_manager = RetentionManager(self.store, settings, index_manager=self.index_manager)
        self.scheduler = scheduler or SnapshotScheduler(settings, self.retention_manager, creator=self.creator)
        self.started = False

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    def wait_for_store(self) -> None:
        """
        Block until the store answers.

        Raises:
            StoreConnectionError: after STARTUP_CONNECT_ATTEMPTS failures
        """

        @with_sync_retry(
            max_attempts=self.settings.STARTUP_CONNECT_ATTEMPTS,
            min_wait=ServiceDefaults.STARTUP_RETRY_MIN_WAIT,
            max_wait=ServiceDefaults.STARTUP_RETRY_MAX_WAIT,
            retry_exceptions=(StoreConnectionError,),
            operation="store_connect",
        )
        def connect() -> None:
            if not self.store.ping():
                raise StoreConnectionError(f"{self.store.name} did not answer at {self.settings.couchdb_url}")

        connect()
        logger.info(f"Connected to {self.store.name}", extra={"event": "store_connected"})

    def log_stats(self, label: str) -> AggregateStats | None:
        try:
            stats = self.retention_manager.get_all_snapshot_stats()
        except StoreError as e:
            logger.error(f"Could not collect {label} statistics: {e}")
            return None

        logger.info(
            f"{label.capitalize()} statistics: {stats.total_snapshots} snapshots "
            f"in {stats.total_databases} databases {stats.by_tier}",
            extra={
                "event": f"{label}_stats",
                "stats": stats.to_dict(),
                "items_processed": stats.total_databases,
            },
        )
        return stats

    def startup(self) -> None:
        """
        Bring the service up.

        Raises:
            StoreConnectionError: if the store is unreachable after retries
        """
        logger.info(
            f"Starting {ServiceDefaults.SERVICE_NAME}",
            extra={"event": "service_starting", "config": self.settings.safe_summary()},
        )

        self.wait_for_store()

        databases = self.store.list_tenant_databases()
        logger.info(
            f"Discovered {len(databases)} tenant databases matching '{self.settings.DATABASE_PATTERN}'",
            extra={"event": "databases_discovered", "items_processed": len(databases)},
        )

        self.log_stats("initial")

        if self.scheduler.start():
            logger.info(f"{ServiceDefaults.SERVICE_NAME} started", extra={"event": "service_started"})
        else:
            logger.info(f"{ServiceDefaults.SERVICE_NAME} started with scheduling disabled")
        self.started = True

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def shutdown(self) -> None:
        """Stop triggers, wait for in-flight work, report and release resources."""
        logger.info(f"Stopping {ServiceDefaults.SERVICE_NAME}", extra={"event": "service_stopping"})

        self.scheduler.shutdown(wait=True)

        if self.started:
            self.log_stats("final")

        if self.creator is not None:
            self.creator.close()
        self.store.close()
        self.started = False
        logger.info(f"{ServiceDefaults.SERVICE_NAME} stopped", extra={"event": "service_stopped"})

    def healthy(self) -> bool:
        return self.store.ping()
