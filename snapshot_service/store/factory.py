# snapshot_service/store/factory.py
"""
Factory function for creating the document store.
"""

import logging

from snapshot_service.config import Settings
from snapshot_service.store.base import DocumentStore

logger = logging.getLogger(__name__)


def create_store(settings: Settings, **kwargs) -> DocumentStore:
    """
    Create the store handle for this process.

    The handle is created once at startup and passed to every component;
    there is no module-level singleton.

    Args:
        settings: Service settings (STORE_BACKEND selects 'couchdb' or 'memory')
        **kwargs: Additional arguments for the backend (e.g. an httpx transport)
    """
    name = settings.STORE_BACKEND

    if name == "couchdb":
        from snapshot_service.store.couchdb import CouchDBStore

        store: DocumentStore = CouchDBStore(
            base_url=settings.couchdb_url,
            auth=settings.couchdb_auth,
            database_prefix=settings.DATABASE_PATTERN,
            timeout=settings.STORE_TIMEOUT_SECONDS,
            **kwargs,
        )
    elif name == "memory":
        from snapshot_service.store.memory import MemoryStore

        store = MemoryStore(database_prefix=settings.DATABASE_PATTERN, **kwargs)
    else:
        raise ValueError(f"Unknown store backend: {name}. Available: couchdb, memory")

    logger.info(f"Document store initialized: {store.name}")
    return store
