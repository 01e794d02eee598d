# snapshot_service/store/__init__.py
"""
Document store access for tenant databases.
"""

from snapshot_service.store.base import DocumentStore
from snapshot_service.store.factory import create_store

__all__ = [
    "DocumentStore",
    "create_store",
]
