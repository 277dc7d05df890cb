# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

# Cloud functions for The Gogfather - guarded content mutations.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
from dataclasses import dataclass, asdict
from typing import Optional

# Third-party library imports
from firebase_admin import initialize_app, firestore
from firebase_functions import https_fn, logger, options

# Local application imports
from backend.auth import RequestAuthContext, identity_from_claims
from backend.config import ResolvedConfig, get_settings, resolve_from_settings
from backend.errors import (
    AuthorizationError,
    ConfigurationError,
    ContentError,
    PermissionDeniedError,
    RecordNotFoundError,
    UnknownCollectionError,
    ValidationError,
)
from backend.mutator import ContentMutator
from backend.store import DocumentStore, FirestoreDocumentStore
from shared.json_utils import convert_keys

initialize_app()

ERROR_CODES = (
    (AuthorizationError, https_fn.FunctionsErrorCode.PERMISSION_DENIED),
    (PermissionDeniedError, https_fn.FunctionsErrorCode.PERMISSION_DENIED),
    (ValidationError, https_fn.FunctionsErrorCode.INVALID_ARGUMENT),
    (UnknownCollectionError, https_fn.FunctionsErrorCode.INVALID_ARGUMENT),
    (RecordNotFoundError, https_fn.FunctionsErrorCode.NOT_FOUND),
    (ConfigurationError, https_fn.FunctionsErrorCode.FAILED_PRECONDITION),
)


@dataclass
class AddContentResult:
    collection: str
    id: str


@dataclass
class MutationResult:
    status: str


def _get_store() -> DocumentStore:
    return FirestoreDocumentStore(firestore.client())


def _get_resolved_config() -> ResolvedConfig:
    return resolve_from_settings(get_settings())


def _auth_context(auth: Optional[https_fn.AuthData]) -> RequestAuthContext:
    """
    Builds the auth context of a callable request.

    Raises UNAUTHENTICATED when the request carries no verified ID token.
    """
    if auth is None:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.UNAUTHENTICATED,
            "Sign in before changing content.",
        )
    return RequestAuthContext(
        identity=identity_from_claims(auth.uid, auth.token),
        policy=get_settings().auth_policy,
    )


def _to_https_error(error: ContentError) -> https_fn.HttpsError:
    code = next(
        (code for cls, code in ERROR_CODES if isinstance(error, cls)),
        https_fn.FunctionsErrorCode.INTERNAL,
    )
    return https_fn.HttpsError(code, error.message)


def _mutator(auth_context: RequestAuthContext, store: DocumentStore) -> ContentMutator:
    settings = get_settings()
    return ContentMutator(
        store,
        _get_resolved_config(),
        auth_context,
        feature_strategy=settings.feature_strategy,
    )


def add_content_for(
    data: dict, auth_context: RequestAuthContext, store: DocumentStore
) -> dict:
    collection = data.get("collection")
    fields = data.get("fields")
    if not collection or not isinstance(fields, dict):
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Must specify 'collection' and 'fields' parameters.",
        )
    try:
        doc_id = _mutator(auth_context, store).add(collection, dict(fields))
    except ContentError as e:
        logger.warn(f"add_content refused for {collection}: {e.message}")
        raise _to_https_error(e) from e
    result = AddContentResult(collection=collection, id=doc_id)
    return convert_keys(asdict(result), "snake_to_camel")


def feature_photo_for(
    data: dict, auth_context: RequestAuthContext, store: DocumentStore
) -> dict:
    photo_id = data.get("photo_id")
    if not photo_id:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Must specify photo_id parameter.",
        )
    try:
        _mutator(auth_context, store).set_featured(photo_id)
    except ContentError as e:
        logger.warn(f"feature_photo refused for {photo_id}: {e.message}")
        raise _to_https_error(e) from e
    return asdict(MutationResult(status="ok"))


def delete_content_for(
    data: dict, auth_context: RequestAuthContext, store: DocumentStore
) -> dict:
    collection = data.get("collection")
    doc_id = data.get("id")
    if not collection or not doc_id:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Must specify 'collection' and 'id' parameters.",
        )
    if data.get("confirm") is not True:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Deleting content requires confirm=true.",
        )
    try:
        _mutator(auth_context, store).delete(collection, doc_id)
    except ContentError as e:
        logger.warn(f"delete_content refused for {collection}/{doc_id}: {e.message}")
        raise _to_https_error(e) from e
    return asdict(MutationResult(status="ok"))


@https_fn.on_call(memory=options.MemoryOption.MB_256)
def add_content(req: https_fn.CallableRequest) -> dict:
    """
    Adds a record to a content collection.

    Args:
        req (https_fn.CallableRequest): The request, containing `collection`
            and the record `fields`.

    Returns:
        A dictionary with the collection and the new record id.
    """
    return add_content_for(req.data or {}, _auth_context(req.auth), _get_store())


@https_fn.on_call(memory=options.MemoryOption.MB_256)
def feature_photo(req: https_fn.CallableRequest) -> dict:
    """Makes the given photo the single featured photo."""
    return feature_photo_for(req.data or {}, _auth_context(req.auth), _get_store())


@https_fn.on_call(memory=options.MemoryOption.MB_256)
def delete_content(req: https_fn.CallableRequest) -> dict:
    """Deletes a record; the request must carry confirm=true."""
    return delete_content_for(req.data or {}, _auth_context(req.auth), _get_store())
