# snapshot_service/services/__init__.py
"""
Snapshot lifecycle services.

Services:
- index_manager: Snapshot views (design document) per tenant database
- retention_manager: Expiry pruning, per-story caps, statistics
- snapshot_creator: Requests to the external snapshot producer
- scheduler: Cron triggers binding schedules to actions
- fan_out: Isolate-and-continue iteration over tenant databases
"""

from snapshot_service.services.fan_out import FanOutResult, fan_out
from snapshot_service.services.index_manager import IndexManager
from snapshot_service.services.retention_manager import RetentionManager
from snapshot_service.services.scheduler import SnapshotScheduler, crontab_trigger
from snapshot_service.services.snapshot_creator import (
    HttpSnapshotCreator,
    SnapshotCreator,
    create_snapshots_for_all_databases,
)

__all__ = [
    # Indexes
    "IndexManager",
    # Retention
    "RetentionManager",
    # Creation
    "SnapshotCreator",
    "HttpSnapshotCreator",
    "create_snapshots_for_all_databases",
    # Scheduling
    "SnapshotScheduler",
    "crontab_trigger",
    # Fan-out
    "FanOutResult",
    "fan_out",
]
