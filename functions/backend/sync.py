"""
Live mirrors of the content collections.

One `CollectionSubscription` per collection keeps the newest-first list of
records up to date from the store's listener. `ContentSync` owns all five,
starts and stops them together, and derives the featured-photo partition.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from google.api_core import exceptions

from backend.config import ResolvedConfig
from backend.errors import ContentError, PermissionDeniedError, UnknownCollectionError
from backend.store import DocumentStore, StoredDocument
from shared.firebase_constants import (
    CONTENT_COLLECTIONS,
    PHOTOS_COLLECTION,
    collection_path,
)
from shared.types import COLLECTION_SPECS, CollectionSpec, Photo, record_from_document

logger = logging.getLogger(__name__)

UpdateListener = Callable[[str, list], None]


class AuthReadiness(Protocol):
    @property
    def ready(self) -> bool:
        ...


def partition_featured(photos: Sequence[Photo]) -> Tuple[Optional[Photo], List[Photo]]:
    """Splits photos into the featured one (newest, if several) and the rest."""
    featured = next((photo for photo in photos if photo.is_featured), None)
    others = [photo for photo in photos if photo is not featured]
    return featured, others


class CollectionSubscription:
    """Mirrors one collection until unsubscribed."""

    def __init__(
        self,
        store: DocumentStore,
        namespace: str,
        spec: CollectionSpec,
        on_update: Optional[UpdateListener] = None,
    ):
        self.store = store
        self.spec = spec
        self.path = collection_path(namespace, spec.name)
        self.records: list = []
        self.error: Optional[ContentError] = None
        self._on_update = on_update
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self.active:
            return
        try:
            self._unsubscribe = self.store.watch(
                self.path, self._on_change, self._on_error
            )
        except exceptions.GoogleAPICallError as e:
            # Left inactive so the next start() retries it.
            self._on_error(e)

    def unsubscribe(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, docs: List[StoredDocument]) -> None:
        records = [
            record_from_document(self.spec.record_type, doc.id, doc.data)
            for doc in docs
        ]
        with self._lock:
            self.records = records
            self.error = None
        if self._on_update:
            self._on_update(self.spec.name, records)

    def _on_error(self, error: Exception) -> None:
        # The previous list stays in place.
        if isinstance(error, exceptions.PermissionDenied):
            wrapped: ContentError = PermissionDeniedError(
                f"permission denied for {self.spec.name}"
            )
        else:
            wrapped = ContentError(f"failed to load {self.spec.name}: {error}")
        logger.error("Subscription to %s failed: %s", self.path, error)
        with self._lock:
            self.error = wrapped


class ContentSync:
    """
    Owns the live subscriptions for every content collection.

    Subscriptions are only opened once a store handle exists, auth reports
    ready, and the namespace is not the fallback literal.
    """

    def __init__(
        self,
        store: Optional[DocumentStore],
        resolved: ResolvedConfig,
        collections: Sequence[str] = CONTENT_COLLECTIONS,
    ):
        self.store = store
        self.resolved = resolved
        self.collections = tuple(collections)
        self.subscriptions: Dict[str, CollectionSubscription] = {}
        self.featured_photo: Optional[Photo] = None
        self.other_photos: List[Photo] = []
        self._listeners: List[UpdateListener] = []
        self._lock = threading.RLock()

    @property
    def active(self) -> bool:
        return bool(self.subscriptions)

    def start(self, auth: AuthReadiness) -> bool:
        """
        Opens all subscriptions; returns whether they are set up.

        Calling it again retries any subscription whose listener could not be
        attached.
        """
        with self._lock:
            if not self.subscriptions:
                if (
                    self.store is None
                    or not auth.ready
                    or not self.resolved.has_namespace
                ):
                    return False
                self.subscriptions = {
                    name: CollectionSubscription(
                        self.store,
                        self.resolved.namespace,
                        COLLECTION_SPECS[name],
                        on_update=self._on_update,
                    )
                    for name in self.collections
                }
            pending = [s for s in self.subscriptions.values() if not s.active]
        for subscription in pending:
            subscription.start()
        if pending:
            logger.info(
                "Subscribed to %d of %d collections in namespace %s",
                sum(1 for s in pending if s.active),
                len(pending),
                self.resolved.namespace,
            )
        return True

    def stop(self) -> None:
        with self._lock:
            subscriptions = list(self.subscriptions.values())
            self.subscriptions = {}
        for subscription in subscriptions:
            subscription.unsubscribe()

    def add_listener(self, listener: UpdateListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def _on_update(self, name: str, records: list) -> None:
        with self._lock:
            if name == PHOTOS_COLLECTION:
                self.featured_photo, self.other_photos = partition_featured(records)
            listeners = list(self._listeners)
        for listener in listeners:
            listener(name, records)

    def _check_known(self, name: str) -> None:
        if name not in self.collections:
            raise UnknownCollectionError(name)

    def records(self, name: str) -> list:
        self._check_known(name)
        subscription = self.subscriptions.get(name)
        return list(subscription.records) if subscription else []

    def error(self, name: str) -> Optional[ContentError]:
        self._check_known(name)
        subscription = self.subscriptions.get(name)
        return subscription.error if subscription else None

    @property
    def errors(self) -> Dict[str, ContentError]:
        return {
            name: subscription.error
            for name, subscription in self.subscriptions.items()
            if subscription.error is not None
        }
