# snapshot_service/constants.py
"""
Centralized constants for snapshot documents, design documents and databases.
"""


class SnapshotDocs:
    """Identifiers shared with the snapshot producer."""

    DOC_TYPE = "story-snapshot"

    # Design document holding the snapshot views
    DESIGN_NAME = "snapshots"
    DESIGN_DOC_ID = f"_design/{DESIGN_NAME}"
    DESIGN_LANGUAGE = "javascript"


class ViewNames:
    """Names of the views inside the snapshots design document."""

    BY_EXPIRATION = "by_expiration"
    BY_STORY_AND_DATE = "by_story_and_date"
    BY_TIER = "by_tier"


class SystemDatabases:
    """Database names that are never treated as tenants."""

    EXCLUDED_MARKERS = ("_replicator", "_users")


class ServiceDefaults:
    """Defaults that are not worth a setting."""

    SERVICE_NAME = "snapshot-service"

    # Startup connectivity retry backoff (seconds)
    STARTUP_RETRY_MIN_WAIT = 2.0
    STARTUP_RETRY_MAX_WAIT = 30.0
