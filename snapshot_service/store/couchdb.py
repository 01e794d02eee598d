# snapshot_service/store/couchdb.py
"""
CouchDB store over HTTP.

Every request goes through one shared httpx.Client with an explicit timeout,
so a hung server cannot block a trigger indefinitely. Transport failures map
to StoreConnectionError; 404 maps to DocumentNotFound (or a degraded view
result); 409/412 map to tagged write outcomes.

API Documentation: https://docs.couchdb.org/en/stable/api/
"""

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from snapshot_service.errors import DocumentNotFound, StoreConnectionError, StoreError
from snapshot_service.models import BulkOutcome, ViewQuery, ViewResult, ViewRow, WriteOutcome
from snapshot_service.store.base import DocumentStore

logger = logging.getLogger(__name__)


def _db_path(database: str) -> str:
    # Database names may contain '/', which must be encoded
    return "/" + quote(database, safe="")


def _doc_path(database: str, doc_id: str) -> str:
    if doc_id.startswith("_design/"):
        return f"{_db_path(database)}/_design/{quote(doc_id[len('_design/'):], safe='')}"
    return f"{_db_path(database)}/{quote(doc_id, safe='')}"


def _encode_params(params: dict[str, Any]) -> dict[str, str]:
    """View query parameters are JSON values in the query string."""
    return {name: json.dumps(value) for name, value in params.items()}


class CouchDBStore(DocumentStore):
    """
    CouchDB document store.

    Configuration:
    - base_url: e.g. http://couchdb:5984 (no credentials)
    - auth: (user, password) for basic auth
    - timeout: per-request timeout in seconds
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        auth: tuple[str, str] | None = None,
        database_prefix: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(database_prefix)
        self.base_url = base_url
        self._client = httpx.Client(
            base_url=base_url,
            auth=auth,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        logger.info(f"CouchDB client configured for {base_url}")

    @property
    def name(self) -> str:
        return "couchdb"

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, database: str | None = None, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise StoreConnectionError(f"CouchDB request timed out: {method} {path}", database=database) from e
        except httpx.TransportError as e:
            raise StoreConnectionError(f"CouchDB unreachable at {self.base_url}: {e}", database=database) from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            return f"{body.get('error', 'error')}: {body.get('reason', '')}"
        return str(body)[:200]

    def _raise_for_status(self, response: httpx.Response, database: str | None = None) -> None:
        if response.status_code < 400:
            return
        detail = self._error_detail(response)
        if response.status_code == 404:
            raise DocumentNotFound(detail, status_code=404, database=database)
        if response.status_code in (401, 403):
            raise StoreError(f"CouchDB rejected credentials: {detail}", response.status_code, database)
        raise StoreError(f"CouchDB error {response.status_code}: {detail}", response.status_code, database)

    # -------------------------------------------------------------------------
    # Databases
    # -------------------------------------------------------------------------

    def list_all_databases(self) -> list[str]:
        response = self._request("GET", "/_all_dbs")
        self._raise_for_status(response)
        return list(response.json())

    def ensure_database(self, name: str) -> WriteOutcome:
        response = self._request("PUT", _db_path(name), database=name)
        if response.status_code == 412:
            return WriteOutcome.ALREADY_EXISTS
        self._raise_for_status(response, name)
        logger.info(f"Created database: {name}")
        return WriteOutcome.CREATED

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def get_document(self, database: str, doc_id: str) -> dict:
        response = self._request("GET", _doc_path(database, doc_id), database=database)
        self._raise_for_status(response, database)
        return response.json()

    def put_document(self, database: str, doc: dict) -> WriteOutcome:
        response = self._request("PUT", _doc_path(database, doc["_id"]), database=database, json=doc)
        if response.status_code == 409:
            return WriteOutcome.CONFLICT
        self._raise_for_status(response, database)
        return WriteOutcome.UPDATED if doc.get("_rev") else WriteOutcome.CREATED

    def bulk_docs(self, database: str, docs: list[dict]) -> list[BulkOutcome]:
        if not docs:
            return []
        response = self._request("POST", f"{_db_path(database)}/_bulk_docs", database=database, json={"docs": docs})
        self._raise_for_status(response, database)

        outcomes = []
        for row in response.json():
            if row.get("ok") or ("rev" in row and "error" not in row):
                outcomes.append(BulkOutcome(id=row.get("id", ""), ok=True, rev=row.get("rev")))
            else:
                outcomes.append(
                    BulkOutcome(
                        id=row.get("id", ""),
                        ok=False,
                        error=row.get("error"),
                        reason=row.get("reason"),
                    )
                )
        return outcomes

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def query_view(self, database: str, design: str, view: str, query: ViewQuery | None = None) -> ViewResult:
        query = query or ViewQuery()
        path = f"{_db_path(database)}/_design/{quote(design, safe='')}/_view/{quote(view, safe='')}"
        response = self._request("GET", path, database=database, params=_encode_params(query.to_params()))

        if response.status_code == 404:
            # Design doc or view not created yet (unmigrated database)
            logger.debug(f"View {design}/{view} missing in {database}: {self._error_detail(response)}")
            return ViewResult.missing()
        self._raise_for_status(response, database)

        body = response.json()
        rows = [
            ViewRow(key=r.get("key"), value=r.get("value"), id=r.get("id"), doc=r.get("doc"))
            for r in body.get("rows", [])
        ]
        return ViewResult(rows=rows, total_rows=body.get("total_rows"))

    def ping(self) -> bool:
        try:
            response = self._request("GET", "/_up")
        except StoreConnectionError as e:
            logger.warning(f"CouchDB ping failed: {e}")
            return False
        return response.status_code == 200
