"""
Error taxonomy for content operations.

Every error is terminal at the caller boundary: nothing here is retried, and
the operation that raised leaves stored content unchanged.
"""

from __future__ import annotations

from enum import StrEnum


class ContentError(Exception):
    """Base class; `kind` is the stable identifier surfaced to clients."""

    kind = "content_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ContentError):
    """Credentials or project id missing; fatal to all data operations."""

    kind = "configuration_error"


class AuthErrorKind(StrEnum):
    PROVIDER_DISABLED = "provider_disabled"
    BAD_CREDENTIALS = "bad_credentials"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


AUTH_ERROR_MESSAGES = {
    AuthErrorKind.PROVIDER_DISABLED: (
        "This sign-in method is disabled for the project. Enable it in the "
        "Firebase console."
    ),
    AuthErrorKind.BAD_CREDENTIALS: "Invalid email or password.",
    AuthErrorKind.RATE_LIMITED: (
        "Too many sign-in attempts. Wait a moment before trying again."
    ),
    AuthErrorKind.UNKNOWN: "Sign-in failed. Please try again.",
}


class AuthenticationError(ContentError):
    """A sign-in attempt failed. The caller must re-submit credentials."""

    kind = "authentication_error"

    def __init__(self, auth_kind: AuthErrorKind, code: str | None = None):
        super().__init__(AUTH_ERROR_MESSAGES[auth_kind])
        self.auth_kind = auth_kind
        self.code = code


class AuthorizationError(ContentError):
    """Refused client-side before any network call."""

    kind = "authorization_error"

    def __init__(
        self,
        message: str = (
            "Not authorized. Write operations require a non-anonymous sign-in."
        ),
    ):
        super().__init__(message)


class PermissionDeniedError(ContentError):
    """The backend refused a read or a write."""

    kind = "permission_denied"


class ValidationError(ContentError):
    """A required field was empty on create; no write was issued."""

    kind = "validation_error"

    def __init__(self, collection_name: str, missing_fields: list[str]):
        super().__init__(
            f"Missing required field(s) for {collection_name}: "
            + ", ".join(missing_fields)
        )
        self.collection_name = collection_name
        self.missing_fields = missing_fields


class RecordNotFoundError(ContentError):
    kind = "not_found"


class UnknownCollectionError(ContentError):
    kind = "unknown_collection"

    def __init__(self, collection_name: str):
        super().__init__(f"Unknown collection: {collection_name}")
        self.collection_name = collection_name
