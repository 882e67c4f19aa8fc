"""Document-collection store backed by SQLAlchemy.

Cases, time entries, staff users and organizations are schemaless JSON
documents grouped into collections. The store offers the small surface the
rest of the application needs: whole-document reads and writes, field-path
updates, array appends, simple filtered queries and per-document
subscriptions that fire after every committed write.
"""

import datetime
import json
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from fitout_app.models import StoredDocument
from fitout_app.timestamps import RawTimestamp, decode_timestamp


CASES_COLLECTION = "cases"
TIME_ENTRIES_COLLECTION = "timeEntries"
STAFF_USERS_COLLECTION = "staffUsers"
ORGANIZATIONS_COLLECTION = "organizations"

DISABLED_MESSAGE = "Document store is disabled (demo mode)."


class DocumentStoreError(RuntimeError):
    """Raised when the document store cannot complete a read or write."""


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a field update targets a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} does not exist.")
        self.collection = collection
        self.doc_id = doc_id


class DocumentStoreDisabledError(DocumentStoreError):
    """Raised by every operation of the demo-mode store."""

    def __init__(self, message: str = DISABLED_MESSAGE):
        super().__init__(message)


class _ServerTimestamp:
    def __repr__(self):
        return "SERVER_TIMESTAMP"


# Replaced by the commit time when a write is applied.
SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class DocumentSnapshot:
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]]
    revision: int = 0

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, path: str, default=None):
        if self.data is None:
            return default
        return get_path(self.data, path, default)


SnapshotCallback = Callable[[DocumentSnapshot], None]
ErrorCallback = Callable[[Exception], None]
Filter = Tuple[str, str, Any]


def get_path(data, path: str, default=None):
    current = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _set_path(data: Dict[str, Any], path: str, value):
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def _resolve_sentinels(value, now: RawTimestamp):
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {key: _resolve_sentinels(item, now) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve_sentinels(item, now) for item in value]
    return value


def _json_default(value):
    if isinstance(value, RawTimestamp):
        return value.to_json()
    if isinstance(value, datetime.datetime):
        return RawTimestamp.from_datetime(value).to_json()
    if isinstance(value, datetime.date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_document(data: Dict[str, Any]) -> str:
    return json.dumps(data, default=_json_default)


def decode_document(raw: str) -> Dict[str, Any]:
    try:
        loaded = json.loads(raw or "{}", object_hook=decode_timestamp)
    except (TypeError, ValueError):
        loaded = {}
    if not isinstance(loaded, dict):
        loaded = {}
    return loaded


def _compare(op: str, left, right) -> bool:
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if op == "in":
        return left in (right or ())
    if op == "array-contains":
        return isinstance(left, list) and right in left
    if left is None or right is None:
        return False
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


def _matches(data: Dict[str, Any], filters: Iterable[Filter]) -> bool:
    for field_path, op, expected in filters:
        if not _compare(op, get_path(data, field_path), expected):
            return False
    return True


class DocumentStore:
    enabled = True

    def __init__(self, database):
        self._db = database
        self._listeners: Dict[Tuple[str, str], Dict[str, Tuple[SnapshotCallback, Optional[ErrorCallback]]]] = {}
        self._lock = threading.Lock()

    # Reads -----------------------------------------------------------------

    def _load_row(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        return (
            StoredDocument.query.filter_by(collection=collection, doc_id=doc_id)
            .first()
        )

    def _snapshot(self, collection: str, doc_id: str, row: Optional[StoredDocument]):
        if row is None:
            return DocumentSnapshot(collection=collection, doc_id=doc_id, data=None)
        return DocumentSnapshot(
            collection=collection,
            doc_id=doc_id,
            data=decode_document(row.data_json),
            revision=row.revision or 0,
        )

    def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        try:
            row = self._load_row(collection, doc_id)
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise DocumentStoreError(f"Failed to read {collection}/{doc_id}: {exc}") from exc
        return self._snapshot(collection, doc_id, row)

    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        page_size: int = 200,
    ) -> List[DocumentSnapshot]:
        filters = list(filters)
        results = [
            snapshot
            for snapshot in self.iter_collection(collection, page_size=page_size)
            if _matches(snapshot.data, filters)
        ]
        if order_by:
            present = [s for s in results if s.get(order_by) is not None]
            missing = [s for s in results if s.get(order_by) is None]
            present.sort(key=lambda s: s.get(order_by), reverse=descending)
            results = present + missing
        if limit is not None:
            results = results[:limit]
        return results

    def iter_collection(self, collection: str, page_size: int = 200) -> Iterator[DocumentSnapshot]:
        """Yield every document of ``collection`` in insertion order, one page at a time."""
        last_id = 0
        while True:
            try:
                rows = (
                    StoredDocument.query.filter(
                        StoredDocument.collection == collection,
                        StoredDocument.id > last_id,
                    )
                    .order_by(StoredDocument.id.asc())
                    .limit(page_size)
                    .all()
                )
            except SQLAlchemyError as exc:
                self._db.session.rollback()
                raise DocumentStoreError(f"Failed to read collection {collection}: {exc}") from exc
            if not rows:
                return
            for row in rows:
                yield self._snapshot(collection, row.doc_id, row)
            last_id = rows[-1].id
            if len(rows) < page_size:
                return

    # Writes ----------------------------------------------------------------

    def _commit(self, collection: str, doc_id: str):
        try:
            self._db.session.commit()
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise DocumentStoreError(f"Failed to write {collection}/{doc_id}: {exc}") from exc
        self._notify(collection, doc_id)

    def _write_row(self, collection: str, doc_id: str, row: Optional[StoredDocument], data):
        payload = encode_document(_resolve_sentinels(data, RawTimestamp.now()))
        if row is None:
            row = StoredDocument(collection=collection, doc_id=doc_id, data_json=payload, revision=1)
            self._db.session.add(row)
        else:
            row.data_json = payload
            row.revision = (row.revision or 0) + 1
        return row

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], *, merge: bool = False):
        try:
            row = self._load_row(collection, doc_id)
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise DocumentStoreError(f"Failed to read {collection}/{doc_id}: {exc}") from exc
        body = dict(data)
        if merge and row is not None:
            existing = decode_document(row.data_json)
            for path, value in body.items():
                _set_path(existing, path, value)
            body = existing
        self._write_row(collection, doc_id, row, body)
        self._commit(collection, doc_id)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def update(self, collection: str, doc_id: str, field_updates: Dict[str, Any]):
        """Apply dotted field-path updates to an existing document."""
        try:
            row = self._load_row(collection, doc_id)
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise DocumentStoreError(f"Failed to read {collection}/{doc_id}: {exc}") from exc
        if row is None:
            raise DocumentNotFoundError(collection, doc_id)
        data = decode_document(row.data_json)
        for path, value in field_updates.items():
            _set_path(data, path, value)
        self._write_row(collection, doc_id, row, data)
        self._commit(collection, doc_id)

    def array_append(self, collection: str, doc_id: str, field_path: str, *elements):
        """Append ``elements`` to the array at ``field_path``.

        The whole array is rewritten; two concurrent appends race and the
        last committed write wins.
        """
        snapshot = self.get(collection, doc_id)
        if not snapshot.exists:
            raise DocumentNotFoundError(collection, doc_id)
        current = snapshot.get(field_path)
        items = list(current) if isinstance(current, list) else []
        items.extend(elements)
        self.update(collection, doc_id, {field_path: items})

    def delete(self, collection: str, doc_id: str):
        try:
            row = self._load_row(collection, doc_id)
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            raise DocumentStoreError(f"Failed to read {collection}/{doc_id}: {exc}") from exc
        if row is None:
            return
        self._db.session.delete(row)
        self._commit(collection, doc_id)

    # Subscriptions ---------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        """Deliver the current snapshot now and again after every write.

        Returns a callable that removes the subscription; calling it twice
        is harmless.
        """
        key = (collection, doc_id)
        token = uuid.uuid4().hex
        with self._lock:
            self._listeners.setdefault(key, {})[token] = (on_snapshot, on_error)

        def unsubscribe():
            with self._lock:
                listeners = self._listeners.get(key)
                if listeners is None:
                    return
                listeners.pop(token, None)
                if not listeners:
                    self._listeners.pop(key, None)

        current_app.logger.info("Subscribed to %s/%s", collection, doc_id)
        self._deliver(collection, doc_id, [(on_snapshot, on_error)])
        return unsubscribe

    def listener_count(self, collection: str, doc_id: str) -> int:
        with self._lock:
            return len(self._listeners.get((collection, doc_id), {}))

    def _notify(self, collection: str, doc_id: str):
        with self._lock:
            callbacks = list(self._listeners.get((collection, doc_id), {}).values())
        if callbacks:
            self._deliver(collection, doc_id, callbacks)

    def _deliver(self, collection, doc_id, callbacks):
        try:
            snapshot = self.get(collection, doc_id)
        except DocumentStoreError as exc:
            for _, on_error in callbacks:
                if on_error is not None:
                    on_error(exc)
            return
        for on_snapshot, _ in callbacks:
            try:
                on_snapshot(snapshot)
            except Exception:
                current_app.logger.exception(
                    "Snapshot listener failed for %s/%s", collection, doc_id
                )


class DisabledDocumentStore:
    """Store used when persistence is switched off; every call raises."""

    enabled = False

    def _refuse(self, *args, **kwargs):
        raise DocumentStoreDisabledError()

    get = query = iter_collection = _refuse
    set = add = update = array_append = delete = _refuse
    subscribe = _refuse

    def listener_count(self, collection: str, doc_id: str) -> int:
        return 0


def get_document_store():
    return current_app.extensions["document_store"]
