# snapshot_service/errors.py
"""
Exception types raised by the store and the retention engine.

Conflicts and degraded view queries are not exceptions: they are returned as
WriteOutcome.CONFLICT and ViewResult.degraded respectively.
"""


class StoreError(Exception):
    """Unexpected response from the document store."""

    def __init__(self, message: str, status_code: int | None = None, database: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.database = database


class StoreConnectionError(StoreError, ConnectionError):
    """Store unreachable or timed out. Fatal to the current action, not the process."""

    pass


class DocumentNotFound(StoreError):
    """Database, document or view does not exist (HTTP 404)."""

    pass


class IndexEnsureError(Exception):
    """Design document could not be created or updated in one database."""

    def __init__(self, database: str, cause: Exception):
        super().__init__(f"Failed to ensure snapshot views in {database}: {cause}")
        self.database = database
        self.cause = cause


class SnapshotCreationError(Exception):
    """The external snapshot creator rejected or failed a creation request."""

    def __init__(self, database: str, tier: str, message: str):
        super().__init__(f"Snapshot creation ({tier}) failed for {database}: {message}")
        self.database = database
        self.tier = tier
