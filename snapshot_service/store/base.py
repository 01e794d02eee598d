# snapshot_service/store/base.py
"""
Document store interface for tenant databases.

Design principles:
- One store handle per process, created explicitly and injected everywhere
- No retention policy here: only discovery, CRUD, bulk and view primitives
- Races are tagged results (WriteOutcome), not exceptions
- A missing view is a degraded (empty) result, not an error
- Unreachable store raises StoreConnectionError; callers do not retry
"""

import logging
from abc import ABC, abstractmethod

from snapshot_service.constants import SystemDatabases
from snapshot_service.models import BulkOutcome, ViewQuery, ViewResult, WriteOutcome

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """
    Abstract interface for a multi-database document store.

    Implementations must handle:
    - Database listing and idempotent creation
    - Single document get/put with revision conflicts reported as WriteOutcome.CONFLICT
    - View queries with range, include_docs and reduce/group options
    - Bulk writes returning one outcome per document
    """

    def __init__(self, database_prefix: str):
        self.database_prefix = database_prefix

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name (e.g., 'couchdb', 'memory')."""
        pass

    @abstractmethod
    def list_all_databases(self) -> list[str]:
        """List every database name, including system databases."""
        pass

    @abstractmethod
    def ensure_database(self, name: str) -> WriteOutcome:
        """
        Get-or-create a database.

        Returns CREATED, or ALREADY_EXISTS when it existed (including when a
        concurrent creator won the race).
        """
        pass

    @abstractmethod
    def get_document(self, database: str, doc_id: str) -> dict:
        """
        Fetch a document.

        Raises:
            DocumentNotFound: if the document (or database) does not exist
        """
        pass

    @abstractmethod
    def put_document(self, database: str, doc: dict) -> WriteOutcome:
        """
        Create or update a document. doc must carry _id, and _rev when updating.

        Returns CREATED, UPDATED, or CONFLICT when the revision is stale or the
        document was created concurrently.
        """
        pass

    @abstractmethod
    def query_view(self, database: str, design: str, view: str, query: ViewQuery | None = None) -> ViewResult:
        """
        Query a view.

        Returns ViewResult.missing() (degraded, no rows) when the design
        document or view does not exist.
        """
        pass

    @abstractmethod
    def bulk_docs(self, database: str, docs: list[dict]) -> list[BulkOutcome]:
        """
        Submit a batch of writes. A mixed batch is a normal outcome: failures
        are reported per row, never raised.
        """
        pass

    @abstractmethod
    def ping(self) -> bool:
        """Return True if the store answers."""
        pass

    def close(self) -> None:
        """Release connections."""
        pass

    def is_tenant_database(self, name: str) -> bool:
        """Tenant databases match the prefix and are never system databases."""
        if not name.startswith(self.database_prefix):
            return False
        return not any(marker in name for marker in SystemDatabases.EXCLUDED_MARKERS)

    def list_tenant_databases(self) -> set[str]:
        """
        Discover tenant databases.

        Raises:
            StoreConnectionError: if the store is unreachable
        """
        tenants = {name for name in self.list_all_databases() if self.is_tenant_database(name)}
        logger.debug(f"Found {len(tenants)} tenant databases: {', '.join(sorted(tenants))}")
        return tenants
