"""
Document store abstraction for Firestore and an in-memory test implementation.

Both implementations speak in collection paths and camelCase document dicts,
and raise `google.api_core.exceptions` errors the way Firestore does so callers
translate failures in one place.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol

import firebase_admin
from firebase_admin import firestore
from google.api_core import exceptions
from google.cloud.firestore_v1 import Query
from google.cloud.firestore_v1.base_query import FieldFilter

from shared.firebase_constants import TIMESTAMP_FIELD

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List["StoredDocument"]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: dict


class DocumentStore(Protocol):
    """Operations the service needs from the remote document database."""

    def add(self, path: str, data: dict) -> str:
        ...

    def update(self, path: str, doc_id: str, fields: dict) -> None:
        ...

    def update_many(self, path: str, updates: Dict[str, dict]) -> None:
        ...

    def exists(self, path: str, doc_id: str) -> bool:
        ...

    def delete(self, path: str, doc_id: str) -> None:
        ...

    def find_equal(self, path: str, field: str, value) -> List[StoredDocument]:
        ...

    def watch(
        self, path: str, on_change: SnapshotCallback, on_error: ErrorCallback
    ) -> Unsubscribe:
        ...


def _newest_first_key(doc: StoredDocument):
    timestamp = doc.data.get(TIMESTAMP_FIELD)
    if not isinstance(timestamp, datetime):
        return (0, datetime.min.replace(tzinfo=timezone.utc))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (1, timestamp)


@dataclass
class _Watcher:
    on_change: SnapshotCallback
    on_error: ErrorCallback


class InMemoryDocumentStore:
    """Simple in-memory document store for development and tests.

    Watchers are notified synchronously after every write, which mirrors the
    write -> snapshot echo of a live Firestore listener.
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}
        self.denied_paths: set[str] = set()
        self._watchers: Dict[str, List[_Watcher]] = {}
        self._lock = threading.RLock()

    def _check_allowed(self, path: str) -> None:
        if path in self.denied_paths:
            raise exceptions.PermissionDenied(
                f"Missing or insufficient permissions for {path}"
            )

    def _snapshot(self, path: str) -> List[StoredDocument]:
        # Firestore drops documents lacking the order-by field from the query.
        docs = [
            StoredDocument(id=doc_id, data=dict(data))
            for doc_id, data in self.collections.get(path, {}).items()
            if TIMESTAMP_FIELD in data
        ]
        return sorted(docs, key=_newest_first_key, reverse=True)

    def _notify(self, path: str) -> None:
        with self._lock:
            watchers = list(self._watchers.get(path, []))
            snapshot = self._snapshot(path)
        for watcher in watchers:
            watcher.on_change(list(snapshot))

    def add(self, path: str, data: dict) -> str:
        with self._lock:
            self._check_allowed(path)
            doc_id = uuid.uuid4().hex[:20]
            self.collections.setdefault(path, {})[doc_id] = dict(data)
        self._notify(path)
        return doc_id

    def update(self, path: str, doc_id: str, fields: dict) -> None:
        with self._lock:
            self._check_allowed(path)
            doc = self.collections.get(path, {}).get(doc_id)
            if doc is None:
                raise exceptions.NotFound(f"No document to update: {path}/{doc_id}")
            doc.update(fields)
        self._notify(path)

    def update_many(self, path: str, updates: Dict[str, dict]) -> None:
        with self._lock:
            self._check_allowed(path)
            docs = self.collections.get(path, {})
            for doc_id in updates:
                if doc_id not in docs:
                    raise exceptions.NotFound(
                        f"No document to update: {path}/{doc_id}"
                    )
            for doc_id, fields in updates.items():
                docs[doc_id].update(fields)
        self._notify(path)

    def delete(self, path: str, doc_id: str) -> None:
        with self._lock:
            self._check_allowed(path)
            self.collections.get(path, {}).pop(doc_id, None)
        self._notify(path)

    def exists(self, path: str, doc_id: str) -> bool:
        with self._lock:
            self._check_allowed(path)
            return doc_id in self.collections.get(path, {})

    def get(self, path: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self.collections.get(path, {}).get(doc_id)
            return dict(doc) if doc is not None else None

    def find_equal(self, path: str, field: str, value) -> List[StoredDocument]:
        with self._lock:
            self._check_allowed(path)
            return [
                StoredDocument(id=doc_id, data=dict(data))
                for doc_id, data in self.collections.get(path, {}).items()
                if data.get(field) == value
            ]

    def watch(
        self, path: str, on_change: SnapshotCallback, on_error: ErrorCallback
    ) -> Unsubscribe:
        try:
            self._check_allowed(path)
        except exceptions.PermissionDenied as e:
            on_error(e)
            return lambda: None

        watcher = _Watcher(on_change=on_change, on_error=on_error)
        with self._lock:
            self._watchers.setdefault(path, []).append(watcher)
            snapshot = self._snapshot(path)
        on_change(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                watchers = self._watchers.get(path, [])
                if watcher in watchers:
                    watchers.remove(watcher)

        return unsubscribe

    def watcher_count(self, path: str) -> int:
        with self._lock:
            return len(self._watchers.get(path, []))

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.collections.clear()
            self.denied_paths.clear()


class FirestoreDocumentStore:
    """
    Firestore-backed implementation using the Firebase Admin SDK.
    """

    def __init__(self, client):
        self._db = client

    @classmethod
    def from_project(cls, project_id: Optional[str]) -> "FirestoreDocumentStore":
        """Initializes (or reuses) the default Firebase app with ADC credentials."""
        try:
            app = firebase_admin.get_app()
        except ValueError:
            options = {"projectId": project_id} if project_id else None
            app = firebase_admin.initialize_app(options=options)
        return cls(firestore.client(app))

    def add(self, path: str, data: dict) -> str:
        _, doc_ref = self._db.collection(path).add(data)
        return doc_ref.id

    def update(self, path: str, doc_id: str, fields: dict) -> None:
        self._db.collection(path).document(doc_id).update(fields)

    def update_many(self, path: str, updates: Dict[str, dict]) -> None:
        batch = self._db.batch()
        collection = self._db.collection(path)
        for doc_id, fields in updates.items():
            batch.update(collection.document(doc_id), fields)
        batch.commit()

    def delete(self, path: str, doc_id: str) -> None:
        self._db.collection(path).document(doc_id).delete()

    def exists(self, path: str, doc_id: str) -> bool:
        return self._db.collection(path).document(doc_id).get().exists

    def find_equal(self, path: str, field: str, value) -> List[StoredDocument]:
        query = self._db.collection(path).where(filter=FieldFilter(field, "==", value))
        return [StoredDocument(id=doc.id, data=doc.to_dict()) for doc in query.stream()]

    def watch(
        self, path: str, on_change: SnapshotCallback, on_error: ErrorCallback
    ) -> Unsubscribe:
        query = self._db.collection(path).order_by(
            TIMESTAMP_FIELD, direction=Query.DESCENDING
        )

        # The listener stream does not report rule rejections to callers, so
        # probe read access before attaching it.
        try:
            query.limit(1).get()
        except exceptions.PermissionDenied as e:
            on_error(e)
            return lambda: None

        def _on_snapshot(docs, changes, read_time):
            on_change(
                [StoredDocument(id=doc.id, data=doc.to_dict() or {}) for doc in docs]
            )

        watch = query.on_snapshot(_on_snapshot)
        logger.info("Listening to %s", path)
        return watch.unsubscribe
