"""
HTTP routes for the public page and the admin panel.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query

from backend.archive import archive_years, group_photos_by_date
from backend.auth import Identity, RequestAuthContext, is_authorized
from backend.dependencies import Services, get_services
from backend.errors import (
    AuthenticationError,
    AuthErrorKind,
    AuthorizationError,
    ConfigurationError,
    ContentError,
    PermissionDeniedError,
    RecordNotFoundError,
    UnknownCollectionError,
    ValidationError,
)
from backend.schemas import (
    ArchiveMonth,
    ArchiveResponse,
    ArchiveYear,
    ContentListResponse,
    CreateContentResponse,
    DiagnosticsResponse,
    ErrorBody,
    FeaturedPhotoResponse,
    IdentityResponse,
    SignInRequest,
    StatusResponse,
)
from shared.firebase_constants import PHOTOS_COLLECTION
from shared.json_utils import convert_keys

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_CODES = (
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (PermissionDeniedError, 403),
    (RecordNotFoundError, 404),
    (UnknownCollectionError, 404),
    (ValidationError, 422),
    (ConfigurationError, 503),
)


def _error_body(error: Optional[ContentError]) -> Optional[ErrorBody]:
    if error is None:
        return None
    return ErrorBody(error=error.kind, message=error.message)


def _http_error(error: ContentError) -> HTTPException:
    status_code = next(
        (code for cls, code in _STATUS_CODES if isinstance(error, cls)), 500
    )
    detail = {"error": error.kind, "message": error.message}
    if isinstance(error, AuthenticationError):
        detail["reason"] = error.auth_kind.value
    return HTTPException(status_code=status_code, detail=detail)


def _to_json(record) -> dict:
    return convert_keys(asdict(record), "snake_to_camel")


def request_auth(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> RequestAuthContext:
    """
    Authorizes one request from its `Authorization: Bearer <ID token>` header.

    A request without the header is unauthenticated, and every write refuses
    it. A malformed header or a rejected token is a 401.
    """
    policy = services.settings.auth_policy
    if not authorization:
        return RequestAuthContext(identity=None, policy=policy)
    scheme, _, token = authorization.partition(" ")
    try:
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError(
                AuthErrorKind.BAD_CREDENTIALS, code="INVALID_ID_TOKEN"
            )
        identity = services.identity_provider.verify_id_token(token.strip())
    except AuthenticationError as e:
        raise _http_error(e) from e
    return RequestAuthContext(identity=identity, policy=policy)


def _identity_response(
    identity: Optional[Identity], services: Services, include_token: bool = False
) -> IdentityResponse:
    return IdentityResponse(
        uid=identity.uid if identity else None,
        email=identity.email if identity else None,
        is_anonymous=identity.is_anonymous if identity else False,
        authorized=is_authorized(True, identity, services.settings.auth_policy),
        id_token=identity.id_token if identity and include_token else None,
    )


@router.get("/diagnostics", response_model=DiagnosticsResponse)
def diagnostics(
    services: Services = Depends(get_services),
    auth_context: RequestAuthContext = Depends(request_auth),
):
    # uid and anonymity describe the read session; `authorized` the caller.
    identity = services.auth.identity
    return DiagnosticsResponse(
        namespace=services.resolved.namespace,
        config_source=services.resolved.source.value,
        config_valid=services.resolved.is_valid,
        auth_state=services.auth.state.value,
        authorized=auth_context.is_authorized,
        uid=identity.uid if identity else None,
        is_anonymous=identity.is_anonymous if identity else None,
        error=_error_body(services.auth.error),
    )


@router.get("/content/{collection}", response_model=ContentListResponse)
def list_content(collection: str, services: Services = Depends(get_services)):
    try:
        records = services.sync.records(collection)
        error = services.sync.error(collection)
    except ContentError as e:
        raise _http_error(e) from e
    return ContentListResponse(
        collection=collection,
        records=[_to_json(record) for record in records],
        error=_error_body(error),
    )


@router.get("/photos/featured", response_model=FeaturedPhotoResponse)
def featured_photo(services: Services = Depends(get_services)):
    featured = services.sync.featured_photo
    return FeaturedPhotoResponse(
        featured=_to_json(featured) if featured else None,
        others=[_to_json(photo) for photo in services.sync.other_photos],
    )


@router.get("/photos/archive", response_model=ArchiveResponse)
def photo_archive(services: Services = Depends(get_services)):
    archive = group_photos_by_date(services.sync.records(PHOTOS_COLLECTION))
    return ArchiveResponse(
        years=[
            ArchiveYear(
                year=year,
                months=[
                    ArchiveMonth(month=month, photos=[_to_json(p) for p in photos])
                    for month, photos in archive[year].items()
                ],
            )
            for year in archive_years(archive)
        ]
    )


@router.post("/auth/sign-in", response_model=IdentityResponse)
def sign_in(payload: SignInRequest, services: Services = Depends(get_services)):
    """Exchanges operator credentials for an ID token to send as a bearer."""
    try:
        identity = services.identity_provider.sign_in_with_email_and_password(
            payload.email, payload.password
        )
    except AuthenticationError as e:
        logger.warning("Sign-in failed: %s (%s)", e.auth_kind, e.code)
        raise _http_error(e) from e
    logger.info("Issued ID token for %s", identity.uid)
    return _identity_response(identity, services, include_token=True)


@router.post("/auth/sign-out", response_model=IdentityResponse)
def sign_out(
    services: Services = Depends(get_services),
    auth_context: RequestAuthContext = Depends(request_auth),
):
    """Ends the caller's sign-in only; the client discards its ID token."""
    if auth_context.identity is not None:
        logger.info("Signed out %s", auth_context.identity.uid)
    return _identity_response(None, services)


@router.post(
    "/content/{collection}", response_model=CreateContentResponse, status_code=201
)
def add_content(
    collection: str,
    payload: dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
    auth_context: RequestAuthContext = Depends(request_auth),
):
    try:
        doc_id = services.mutator_for(auth_context).add(collection, dict(payload))
    except ContentError as e:
        raise _http_error(e) from e
    return CreateContentResponse(collection=collection, id=doc_id)


@router.post("/photos/{photo_id}/feature", response_model=StatusResponse)
def feature_photo(
    photo_id: str,
    services: Services = Depends(get_services),
    auth_context: RequestAuthContext = Depends(request_auth),
):
    try:
        services.mutator_for(auth_context).set_featured(photo_id)
    except ContentError as e:
        raise _http_error(e) from e
    return StatusResponse(status="ok")


@router.delete("/content/{collection}/{doc_id}", response_model=StatusResponse)
def delete_content(
    collection: str,
    doc_id: str,
    confirm: bool = Query(False, description="Operator confirmation"),
    services: Services = Depends(get_services),
    auth_context: RequestAuthContext = Depends(request_auth),
):
    if not confirm:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "confirmation_required",
                "message": "Deleting content requires confirm=true.",
            },
        )
    try:
        services.mutator_for(auth_context).delete(collection, doc_id)
    except ContentError as e:
        raise _http_error(e) from e
    return StatusResponse(status="ok")
