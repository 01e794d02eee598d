# snapshot_service/store/views.py
"""
Snapshot view definitions.

The design document is a fixed, versioned data structure compiled into the
service. CouchDB executes the JavaScript map functions; the in-memory store
executes the matching Python projection. Both must stay in lockstep.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from snapshot_service.constants import SnapshotDocs, ViewNames

Projection = Callable[[dict], tuple[Any, Any] | None]


@dataclass(frozen=True)
class ViewDefinition:
    """One view: JavaScript map source, optional builtin reduce, Python twin."""

    name: str
    map: str
    project: Projection = field(compare=False, repr=False)
    reduce: str | None = None

    def to_design(self) -> dict:
        view = {"map": self.map}
        if self.reduce:
            view["reduce"] = self.reduce
        return view


def _is_snapshot(doc: dict) -> bool:
    return doc.get("type") == SnapshotDocs.DOC_TYPE


def _project_by_expiration(doc: dict) -> tuple[Any, Any] | None:
    if _is_snapshot(doc) and doc.get("expiresAt"):
        return doc["expiresAt"], doc.get("storyId")
    return None


def _project_by_story_and_date(doc: dict) -> tuple[Any, Any] | None:
    if not _is_snapshot(doc):
        return None
    value: dict[str, Any] = {"tier": doc.get("retentionTier")}
    metadata = doc.get("metadata")
    if not metadata:
        value["wordCount"] = 0
    elif metadata.get("wordCount") is not None:
        value["wordCount"] = metadata["wordCount"]
    return [doc.get("storyId"), doc.get("createdAt")], value


def _project_by_tier(doc: dict) -> tuple[Any, Any] | None:
    if _is_snapshot(doc):
        return [doc.get("retentionTier"), doc.get("createdAt")], doc.get("storyId")
    return None


BY_EXPIRATION = ViewDefinition(
    name=ViewNames.BY_EXPIRATION,
    map=(
        "function (doc) {\n"
        "  if (doc.type === 'story-snapshot' && doc.expiresAt) {\n"
        "    emit(doc.expiresAt, doc.storyId);\n"
        "  }\n"
        "}"
    ),
    project=_project_by_expiration,
)

BY_STORY_AND_DATE = ViewDefinition(
    name=ViewNames.BY_STORY_AND_DATE,
    map=(
        "function (doc) {\n"
        "  if (doc.type === 'story-snapshot') {\n"
        "    emit([doc.storyId, doc.createdAt], {\n"
        "      tier: doc.retentionTier,\n"
        "      wordCount: doc.metadata ? doc.metadata.wordCount : 0\n"
        "    });\n"
        "  }\n"
        "}"
    ),
    project=_project_by_story_and_date,
)

BY_TIER = ViewDefinition(
    name=ViewNames.BY_TIER,
    map=(
        "function (doc) {\n"
        "  if (doc.type === 'story-snapshot') {\n"
        "    emit([doc.retentionTier, doc.createdAt], doc.storyId);\n"
        "  }\n"
        "}"
    ),
    project=_project_by_tier,
    reduce="_count",
)

SNAPSHOT_VIEWS: tuple[ViewDefinition, ...] = (BY_EXPIRATION, BY_STORY_AND_DATE, BY_TIER)

VIEWS_BY_NAME: dict[str, ViewDefinition] = {v.name: v for v in SNAPSHOT_VIEWS}


def desired_views() -> dict[str, dict]:
    """The 'views' object of the snapshots design document."""
    return {v.name: v.to_design() for v in SNAPSHOT_VIEWS}


def desired_design_document() -> dict:
    """Full design document, without _rev."""
    return {
        "_id": SnapshotDocs.DESIGN_DOC_ID,
        "language": SnapshotDocs.DESIGN_LANGUAGE,
        "views": desired_views(),
    }


def design_is_current(existing: dict) -> bool:
    """Structural comparison of a stored design document against the desired one."""
    language = existing.get("language", SnapshotDocs.DESIGN_LANGUAGE)
    return language == SnapshotDocs.DESIGN_LANGUAGE and existing.get("views") == desired_views()


def find_projection(view_def: dict) -> Projection | None:
    """Python projection for a stored view definition, if it is one of ours."""
    for definition in SNAPSHOT_VIEWS:
        if definition.to_design() == view_def:
            return definition.project
    return None


# -----------------------------------------------------------------------------
# Key collation
# -----------------------------------------------------------------------------


def collation_key(value: Any) -> tuple:
    """
    Sort key following CouchDB view collation:
    null < false < true < numbers < strings < arrays < objects.

    Strings compare by code point (CouchDB uses ICU; identical for ISO
    timestamps and ASCII identifiers).
    """
    if value is None:
        return (0,)
    if value is False:
        return (1,)
    if value is True:
        return (2,)
    if isinstance(value, (int, float)):
        return (3, value)
    if isinstance(value, str):
        return (4, value)
    if isinstance(value, (list, tuple)):
        return (5, tuple(collation_key(item) for item in value))
    if isinstance(value, dict):
        return (6, tuple((k, collation_key(v)) for k, v in value.items()))
    raise TypeError(f"Unsupported view key type: {type(value).__name__}")
