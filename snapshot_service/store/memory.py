# snapshot_service/store/memory.py
"""
In-process document store for development and testing.

Mimics CouchDB semantics that the retention engine depends on:
revisions and conflicts, tombstone deletes, view projection with CouchDB key
collation, inclusive range queries and _count/_sum reduce with grouping.
NOT for production use.
"""

import copy
import logging
import threading
import uuid
from itertools import groupby
from typing import Any

from snapshot_service.errors import DocumentNotFound, StoreError
from snapshot_service.models import BulkOutcome, ViewQuery, ViewResult, ViewRow, WriteOutcome
from snapshot_service.store.base import DocumentStore
from snapshot_service.store.views import collation_key, find_projection

logger = logging.getLogger(__name__)


class MemoryStore(DocumentStore):
    """
    Dict-backed store. Thread-safe; one lock guards all databases.

    Deleted documents are kept as tombstones ({_id, _rev, _deleted}) so that
    a second delete of the same revision conflicts, as it does in CouchDB.
    """

    def __init__(self, database_prefix: str = ""):
        super().__init__(database_prefix)
        self._databases: dict[str, dict[str, dict]] = {}
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return "memory"

    # -------------------------------------------------------------------------
    # Databases
    # -------------------------------------------------------------------------

    def list_all_databases(self) -> list[str]:
        with self._lock:
            return sorted(self._databases)

    def ensure_database(self, name: str) -> WriteOutcome:
        with self._lock:
            if name in self._databases:
                return WriteOutcome.ALREADY_EXISTS
            self._databases[name] = {}
            logger.info(f"Created database: {name}")
            return WriteOutcome.CREATED

    def _db(self, database: str) -> dict[str, dict]:
        try:
            return self._databases[database]
        except KeyError:
            raise DocumentNotFound("Database does not exist.", status_code=404, database=database)

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    @staticmethod
    def _next_rev(current: str | None) -> str:
        generation = int(current.split("-", 1)[0]) if current else 0
        return f"{generation + 1}-{uuid.uuid4().hex}"

    def get_document(self, database: str, doc_id: str) -> dict:
        with self._lock:
            doc = self._db(database).get(doc_id)
            if doc is None or doc.get("_deleted"):
                raise DocumentNotFound(f"Document {doc_id} not found", status_code=404, database=database)
            return copy.deepcopy(doc)

    def _write(self, docs: dict[str, dict], doc: dict) -> tuple[WriteOutcome, str | None]:
        """Apply one write under the lock. Returns the outcome and new revision."""
        doc_id = doc.get("_id") or uuid.uuid4().hex
        current = docs.get(doc_id)
        live = current is not None and not current.get("_deleted")
        given_rev = doc.get("_rev")

        if live and given_rev != current["_rev"]:
            return WriteOutcome.CONFLICT, None
        if not live and given_rev is not None:
            # Stale revision against a missing or already deleted document
            if current is None or given_rev != current["_rev"]:
                return WriteOutcome.CONFLICT, None

        new_rev = self._next_rev(current["_rev"] if current else None)
        if doc.get("_deleted"):
            if not live:
                return WriteOutcome.CONFLICT, None
            docs[doc_id] = {"_id": doc_id, "_rev": new_rev, "_deleted": True}
            return WriteOutcome.UPDATED, new_rev

        stored = copy.deepcopy(doc)
        stored["_id"] = doc_id
        stored["_rev"] = new_rev
        docs[doc_id] = stored
        return (WriteOutcome.UPDATED if live else WriteOutcome.CREATED), new_rev

    def put_document(self, database: str, doc: dict) -> WriteOutcome:
        with self._lock:
            outcome, _ = self._write(self._db(database), doc)
            return outcome

    def bulk_docs(self, database: str, docs: list[dict]) -> list[BulkOutcome]:
        with self._lock:
            stored = self._db(database)
            outcomes = []
            for doc in docs:
                outcome, rev = self._write(stored, doc)
                if outcome is WriteOutcome.CONFLICT:
                    outcomes.append(
                        BulkOutcome(
                            id=doc.get("_id", ""),
                            ok=False,
                            error="conflict",
                            reason="Document update conflict.",
                        )
                    )
                else:
                    outcomes.append(BulkOutcome(id=doc.get("_id", ""), ok=True, rev=rev))
            return outcomes

    def live_documents(self, database: str) -> list[dict]:
        """All non-deleted documents (test/inspection helper)."""
        with self._lock:
            return [copy.deepcopy(d) for d in self._db(database).values() if not d.get("_deleted")]

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def query_view(self, database: str, design: str, view: str, query: ViewQuery | None = None) -> ViewResult:
        query = query or ViewQuery()
        with self._lock:
            docs = self._db(database)
            design_doc = docs.get(f"_design/{design}")
            if design_doc is None or design_doc.get("_deleted") or view not in design_doc.get("views", {}):
                logger.debug(f"View {design}/{view} missing in {database}")
                return ViewResult.missing()

            view_def = design_doc["views"][view]
            project = find_projection(view_def)
            if project is None:
                raise StoreError(
                    f"Cannot execute custom map function for {design}/{view}",
                    status_code=500,
                    database=database,
                )

            rows = []
            for doc_id, doc in docs.items():
                if doc.get("_deleted") or doc_id.startswith("_design/"):
                    continue
                emitted = project(doc)
                if emitted is not None:
                    key, value = emitted
                    rows.append(ViewRow(key=key, value=value, id=doc_id, doc=doc))

        rows.sort(key=lambda r: (collation_key(r.key), r.id))
        rows = [r for r in rows if self._in_range(r.key, query)]
        total_rows = len(rows)

        reducer = view_def.get("reduce")
        if reducer and query.reduce is not False:
            if query.include_docs:
                raise StoreError("include_docs is invalid for reduce", status_code=400, database=database)
            rows = self._reduce(rows, reducer, query)
        elif query.include_docs:
            rows = [ViewRow(key=r.key, value=r.value, id=r.id, doc=copy.deepcopy(r.doc)) for r in rows]
        else:
            rows = [ViewRow(key=r.key, value=r.value, id=r.id) for r in rows]

        if query.limit is not None:
            rows = rows[: query.limit]
        return ViewResult(rows=rows, total_rows=total_rows)

    @staticmethod
    def _in_range(key: Any, query: ViewQuery) -> bool:
        k = collation_key(key)
        if query.start_key is not None and k < collation_key(query.start_key):
            return False
        if query.end_key is not None:
            end = collation_key(query.end_key)
            if k > end or (not query.inclusive_end and k == end):
                return False
        return True

    @staticmethod
    def _reduce(rows: list[ViewRow], reducer: str, query: ViewQuery) -> list[ViewRow]:
        if reducer == "_count":
            combine = len
        elif reducer == "_sum":
            combine = lambda group: sum(r.value for r in group)  # noqa: E731
        else:
            raise StoreError(f"Unsupported reduce function: {reducer}", status_code=500)

        if not query.group and query.group_level is None:
            return [ViewRow(key=None, value=combine(rows))] if rows else []

        def group_key(row: ViewRow) -> Any:
            if query.group_level is not None and isinstance(row.key, list):
                return row.key[: query.group_level]
            return row.key

        reduced = []
        for key, group in groupby(rows, key=lambda r: collation_key(group_key(r))):
            members = list(group)
            reduced.append(ViewRow(key=group_key(members[0]), value=combine(members)))
        return reduced

    def ping(self) -> bool:
        return True
