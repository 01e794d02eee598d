# snapshot_service/services/index_manager.py
"""
Snapshot view (design document) management.

Guarantees that a tenant database carries the current snapshot views.
Safe under concurrent service instances: the definitions are static, so a
writer that loses a create/update race finds the desired state already in
place and reports success without re-fetching or retrying.
"""

import logging

from snapshot_service.constants import SnapshotDocs
from snapshot_service.errors import DocumentNotFound, IndexEnsureError, StoreError
from snapshot_service.models import EnsureOutcome, WriteOutcome
from snapshot_service.store.base import DocumentStore
from snapshot_service.store.views import design_is_current, desired_design_document

logger = logging.getLogger(__name__)


class IndexManager:
    """Ensures the snapshots design document in each tenant database."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def ensure_indexes(self, database: str) -> EnsureOutcome:
        """
        Create or update the snapshots design document in `database`.

        1. Fetch the design doc by its well-known id
        2. Absent: create it (a creation conflict means another instance won)
        3. Present: compare structurally; update with its _rev only if different
           (an update conflict means another instance updated concurrently)

        Raises:
            IndexEnsureError: any failure other than not-found or conflict
        """
        try:
            existing = self.store.get_document(database, SnapshotDocs.DESIGN_DOC_ID)
        except DocumentNotFound:
            existing = None
        except StoreError as e:
            raise IndexEnsureError(database, e) from e

        if existing is None:
            return self._create(database)

        if design_is_current(existing):
            logger.debug(f"Views already up-to-date for database: {database}")
            return EnsureOutcome.ALREADY_CURRENT

        return self._update(database, existing["_rev"])

    def _create(self, database: str) -> EnsureOutcome:
        try:
            outcome = self.store.put_document(database, desired_design_document())
        except StoreError as e:
            raise IndexEnsureError(database, e) from e

        if outcome is WriteOutcome.CONFLICT:
            logger.debug(f"Views already created by another process for: {database}")
            return EnsureOutcome.LOST_RACE

        logger.info(f"Created views for database: {database}", extra={"event": "views_created"})
        return EnsureOutcome.CREATED

    def _update(self, database: str, rev: str) -> EnsureOutcome:
        design_doc = desired_design_document()
        design_doc["_rev"] = rev

        try:
            outcome = self.store.put_document(database, design_doc)
        except StoreError as e:
            raise IndexEnsureError(database, e) from e

        if outcome is WriteOutcome.CONFLICT:
            logger.debug(f"Views update conflict (another process updated): {database}")
            return EnsureOutcome.LOST_RACE

        logger.info(f"Updated views for database: {database}", extra={"event": "views_updated"})
        return EnsureOutcome.UPDATED
