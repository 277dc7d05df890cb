"""
Authorized writes to the content collections.

Nothing here touches local state: the live subscriptions observe every write
echoed back from the store. Writes are not retried.

Featuring a photo is two-phase by default: every currently featured photo is
un-featured, then the target is featured, as separate writes. Two operators
racing on this can transiently leave zero or two featured photos; the next
feature call restores the single-featured state. `FeatureStrategy.ATOMIC_BATCH`
issues both phases as one batched write instead.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, MutableMapping, Optional, Protocol

from google.api_core import exceptions

from backend.auth import Identity
from backend.config import FeatureStrategy, ResolvedConfig
from backend.errors import (
    AuthorizationError,
    ConfigurationError,
    PermissionDeniedError,
    RecordNotFoundError,
    UnknownCollectionError,
    ValidationError,
)
from backend.store import DocumentStore
from shared.firebase_constants import (
    IS_FEATURED_FIELD,
    OWNER_ID_FIELD,
    PHOTOS_COLLECTION,
    TIMESTAMP_FIELD,
    collection_path,
)
from shared.json_utils import convert_keys
from shared.types import COLLECTION_SPECS, CollectionSpec

logger = logging.getLogger(__name__)


class AuthContext(Protocol):
    @property
    def identity(self) -> Optional[Identity]:
        ...

    @property
    def is_authorized(self) -> bool:
        ...


class ContentMutator:
    def __init__(
        self,
        store: Optional[DocumentStore],
        resolved: ResolvedConfig,
        auth: AuthContext,
        feature_strategy: FeatureStrategy = FeatureStrategy.TWO_PHASE,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.resolved = resolved
        self.auth = auth
        self.feature_strategy = feature_strategy
        self._clock = clock
        self._in_flight = 0
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        """Advisory: true while a write issued by this mutator is in flight."""
        return self._in_flight > 0

    def _begin(self, collection_name: str) -> tuple[DocumentStore, CollectionSpec]:
        spec = COLLECTION_SPECS.get(collection_name)
        if spec is None:
            raise UnknownCollectionError(collection_name)
        if not self.auth.is_authorized:
            raise AuthorizationError()
        if self.store is None or not self.resolved.is_valid:
            raise ConfigurationError(
                "Content cannot be changed: the Firebase project is not configured."
            )
        return self.store, spec

    def _run(self, operation: str, collection_name: str, write: Callable[[], object]):
        with self._lock:
            self._in_flight += 1
        try:
            return write()
        except exceptions.PermissionDenied as e:
            logger.error("%s on %s refused by backend: %s", operation, collection_name, e)
            raise PermissionDeniedError(
                f"permission denied: {operation} on {collection_name}"
            ) from e
        except exceptions.NotFound as e:
            raise RecordNotFoundError(f"{collection_name} record not found") from e
        finally:
            with self._lock:
                self._in_flight -= 1

    def add(self, collection_name: str, draft: MutableMapping[str, object]) -> str:
        """
        Creates a record from the draft's content fields and returns its id.

        The draft is the caller's input form; it is cleared whatever the
        outcome.

        Raises:
            AuthorizationError: The caller may not write; no write is issued.
            ValidationError: A required field is empty; no write is issued.
            ConfigurationError: No usable project configuration.
            PermissionDeniedError: The backend refused the write.
        """
        try:
            store, spec = self._begin(collection_name)
            fields = convert_keys(dict(draft), "camel_to_snake")
            missing = [name for name in spec.required_fields if not fields.get(name)]
            if missing:
                raise ValidationError(collection_name, missing)

            document = convert_keys(
                {
                    name: fields[name]
                    for name in spec.content_fields
                    if fields.get(name) is not None
                },
                "snake_to_camel",
            )
            document[TIMESTAMP_FIELD] = self._clock()
            document[OWNER_ID_FIELD] = self.auth.identity.uid
            if collection_name == PHOTOS_COLLECTION:
                document[IS_FEATURED_FIELD] = False

            path = collection_path(self.resolved.namespace, collection_name)
            doc_id = self._run("add", collection_name, lambda: store.add(path, document))
            logger.info("Added %s/%s", collection_name, doc_id)
            return doc_id
        finally:
            draft.clear()

    def set_featured(self, photo_id: str) -> None:
        """
        Makes `photo_id` the single featured photo.

        Raises:
            RecordNotFoundError: The target photo does not exist.
        """
        store, _ = self._begin(PHOTOS_COLLECTION)
        path = collection_path(self.resolved.namespace, PHOTOS_COLLECTION)

        def write() -> None:
            # Nothing is un-featured for a target that does not exist.
            if not store.exists(path, photo_id):
                raise exceptions.NotFound(f"No photo to feature: {path}/{photo_id}")
            featured_ids = [
                doc.id
                for doc in store.find_equal(path, IS_FEATURED_FIELD, True)
                if doc.id != photo_id
            ]
            if self.feature_strategy == FeatureStrategy.ATOMIC_BATCH:
                updates: Dict[str, dict] = {
                    doc_id: {IS_FEATURED_FIELD: False} for doc_id in featured_ids
                }
                updates[photo_id] = {IS_FEATURED_FIELD: True}
                store.update_many(path, updates)
                return

            for doc_id in featured_ids:
                store.update(path, doc_id, {IS_FEATURED_FIELD: False})
            logger.info("Un-featured %d photo(s)", len(featured_ids))
            store.update(path, photo_id, {IS_FEATURED_FIELD: True})

        self._run("feature", PHOTOS_COLLECTION, write)
        logger.info("Featured photo %s", photo_id)

    def delete(self, collection_name: str, doc_id: str) -> None:
        """Removes a record unconditionally. Missing records are a no-op."""
        store, _ = self._begin(collection_name)
        path = collection_path(self.resolved.namespace, collection_name)
        self._run("delete", collection_name, lambda: store.delete(path, doc_id))
        logger.info("Deleted %s/%s", collection_name, doc_id)
