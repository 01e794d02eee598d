# snapshot_service/services/fan_out.py
"""
Isolate-and-continue iteration over tenant databases.

Every cross-database operation (expiry pruning, cap pruning, statistics,
snapshot creation requests) runs through fan_out(): one database failing is
logged and excluded from the result, never aborting the others.
"""

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextvars import copy_context
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from snapshot_service.logging_config import database_var, operation_var

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FanOutResult(Generic[T]):
    """Per-database results; databases that raised are in `errors` only."""

    operation: str
    results: dict[str, T] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def databases(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def failed_databases(self) -> list[str]:
        return sorted(self.errors)


def _run_for_database(operation: str, database: str, func: Callable[[str], T]) -> T:
    operation_var.set(operation)
    database_var.set(database)
    return func(database)


def fan_out(
    databases: Iterable[str],
    func: Callable[[str], T],
    operation: str,
    max_workers: int = 10,
) -> FanOutResult[T]:
    """
    Run func(database) for every database on a bounded thread pool.

    Args:
        databases: Tenant database names (order is not significant)
        func: Per-database work; any Exception it raises is caught and logged
        operation: Name used in log records (e.g. "prune_expired")
        max_workers: Databases processed concurrently

    Returns:
        FanOutResult with successful results and per-database error messages
    """
    start_time = time.time()
    result: FanOutResult[T] = FanOutResult(operation=operation)
    targets = list(databases)

    if targets:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(targets)))) as executor:
            futures = {
                executor.submit(copy_context().run, _run_for_database, operation, db_name, func): db_name
                for db_name in targets
            }

            for future in as_completed(futures):
                db_name = futures[future]
                try:
                    result.results[db_name] = future.result()
                except Exception as e:
                    logger.error(
                        f"Failed to {operation} for database {db_name}: {e}",
                        extra={"event": f"{operation}_database_failed", "database": db_name, "operation": operation},
                        exc_info=True,
                    )
                    result.errors[db_name] = str(e)

    result.duration_ms = int((time.time() - start_time) * 1000)
    return result
