# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from snapshot_service.config import Settings
from snapshot_service.constants import SnapshotDocs
from snapshot_service.models import RetentionTier, expires_at_for, format_timestamp
from snapshot_service.store.memory import MemoryStore

PREFIX = "creative-writer-stories"
ALICE_DB = f"{PREFIX}-alice"
BOB_DB = f"{PREFIX}-bob"

# Fixed clock for retention tests
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def make_settings(**overrides) -> Settings:
    """Settings isolated from the host environment's .env file."""
    values = {
        "STORE_BACKEND": "memory",
        "DATABASE_PATTERN": PREFIX,
        "BATCH_SIZE": 4,
        "TZ": "UTC",
        "ADMIN_API_KEY": "test-admin-key",
        "LOG_JSON": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_snapshot(
    story_id: str = "story-1",
    created_at: datetime = NOW,
    tier: RetentionTier | str = RetentionTier.GRANULAR,
    expires_at: str | None = "default",
    doc_id: str | None = None,
    **fields,
) -> dict:
    """Snapshot document as the external producer writes it."""
    tier = RetentionTier(tier)
    doc = {
        "_id": doc_id or f"snapshot-{story_id}-{uuid.uuid4().hex[:8]}",
        "type": SnapshotDocs.DOC_TYPE,
        "storyId": story_id,
        "createdAt": format_timestamp(created_at),
        "retentionTier": tier.value,
        "metadata": {"wordCount": 120},
    }
    if expires_at == "default":
        expires_at = expires_at_for(tier, created_at)
    if expires_at is not None:
        doc["expiresAt"] = expires_at
    doc.update(fields)
    return doc


def seed(store: MemoryStore, database: str, docs: list[dict]) -> list[dict]:
    store.ensure_database(database)
    for doc in docs:
        store.put_document(database, doc)
    return docs


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return MemoryStore(database_prefix=PREFIX)


@pytest.fixture
def alice_db(store):
    store.ensure_database(ALICE_DB)
    return ALICE_DB


@pytest.fixture
def hourly_snapshots():
    """Five hourly snapshots of one story, oldest first."""
    return [
        make_snapshot("story-1", NOW - timedelta(hours=5 - i), RetentionTier.HOURLY, doc_id=f"snap-{i}")
        for i in range(5)
    ]
