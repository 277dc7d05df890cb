"""
Sign-in state for the content service.

`AuthSession` establishes an identity with Firebase Auth (anonymous, custom
token or email/password) and tracks sign-in state changes. Whether an identity
may write content is decided by `is_authorized`, evaluated on every access.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field, replace
from enum import StrEnum
from typing import Callable, Dict, List, Optional, Protocol

import requests
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from backend.config import AuthPolicy, PersistencePolicy, ResolvedConfig
from backend.errors import (
    AuthenticationError,
    AuthErrorKind,
    ConfigurationError,
    ContentError,
)

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
REQUEST_TIMEOUT = 30  # seconds

_PROVIDER_DISABLED_CODES = {
    "OPERATION_NOT_ALLOWED",
    "ADMIN_ONLY_OPERATION",
    "auth/operation-not-allowed",
    "auth/admin-restricted-operation",
}
_BAD_CREDENTIAL_CODES = {
    "INVALID_PASSWORD",
    "EMAIL_NOT_FOUND",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "INVALID_CUSTOM_TOKEN",
    "INVALID_ID_TOKEN",
    "CREDENTIAL_MISMATCH",
    "USER_DISABLED",
    "auth/invalid-credential",
    "auth/wrong-password",
    "auth/user-not-found",
    "auth/invalid-email",
    "auth/invalid-custom-token",
    "auth/user-disabled",
}
_RATE_LIMITED_CODES = {"TOO_MANY_ATTEMPTS_TRY_LATER", "auth/too-many-requests"}


class AuthState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SIGNED_OUT = "signed_out"


@dataclass(frozen=True)
class Identity:
    uid: str
    is_anonymous: bool = False
    email: Optional[str] = None
    id_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)


AuthListener = Callable[[Optional[Identity]], None]


def classify_auth_error(code: Optional[str]) -> AuthErrorKind:
    """Maps a Firebase Auth error code (REST or web SDK form) to a kind."""
    if not code:
        return AuthErrorKind.UNKNOWN
    # REST messages may carry a detail suffix, e.g. "TOO_MANY_ATTEMPTS_TRY_LATER : ..."
    code = code.split(" : ", 1)[0].strip()
    if code in _PROVIDER_DISABLED_CODES:
        return AuthErrorKind.PROVIDER_DISABLED
    if code in _BAD_CREDENTIAL_CODES:
        return AuthErrorKind.BAD_CREDENTIALS
    if code in _RATE_LIMITED_CODES:
        return AuthErrorKind.RATE_LIMITED
    return AuthErrorKind.UNKNOWN


def identity_from_claims(
    uid: str, claims: Optional[dict], id_token: Optional[str] = None
) -> Identity:
    """Builds an identity from verified ID token claims."""
    claims = claims or {}
    firebase_claims = claims.get("firebase") or {}
    return Identity(
        uid=uid,
        is_anonymous=firebase_claims.get("sign_in_provider") == "anonymous",
        email=claims.get("email"),
        id_token=id_token,
    )


def is_authorized(
    ready: bool, identity: Optional[Identity], policy: AuthPolicy
) -> bool:
    """The predicate gating every mutating operation."""
    if not ready or identity is None:
        return False
    if policy == AuthPolicy.CREDENTIAL_REQUIRED and identity.is_anonymous:
        return False
    return True


class IdentityProvider(Protocol):
    """Sign-in operations offered by the hosted auth provider."""

    def sign_in_anonymously(self) -> Identity:
        ...

    def sign_in_with_custom_token(self, token: str) -> Identity:
        ...

    def sign_in_with_email_and_password(self, email: str, password: str) -> Identity:
        ...

    def verify_id_token(self, id_token: str) -> Identity:
        ...


class IdentityToolkitProvider:
    """Firebase Auth over the Identity Toolkit REST API."""

    def __init__(
        self,
        api_key: str,
        emulator_host: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        if emulator_host:
            self.base_url = f"http://{emulator_host}/identitytoolkit.googleapis.com/v1"
        else:
            self.base_url = IDENTITY_TOOLKIT_URL
        self.session = session or requests.Session()

    def _post(self, method: str, payload: dict) -> dict:
        try:
            response = self.session.post(
                f"{self.base_url}/accounts:{method}",
                params={"key": self.api_key},
                json=payload,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise AuthenticationError(
                AuthErrorKind.UNKNOWN, code="network-request-failed"
            ) from e

        if not response.ok:
            code = _error_code(response)
            raise AuthenticationError(classify_auth_error(code), code=code)
        return response.json()

    def sign_in_anonymously(self) -> Identity:
        data = self._post("signUp", {"returnSecureToken": True})
        return Identity(
            uid=data["localId"],
            is_anonymous=True,
            id_token=data.get("idToken"),
            refresh_token=data.get("refreshToken"),
        )

    def sign_in_with_custom_token(self, token: str) -> Identity:
        data = self._post(
            "signInWithCustomToken", {"token": token, "returnSecureToken": True}
        )
        id_token = data.get("idToken")
        # The custom token exchange does not return the uid.
        lookup = self._post("lookup", {"idToken": id_token})
        user = (lookup.get("users") or [{}])[0]
        return Identity(
            uid=user["localId"],
            is_anonymous=False,
            email=user.get("email"),
            id_token=id_token,
            refresh_token=data.get("refreshToken"),
        )

    def sign_in_with_email_and_password(self, email: str, password: str) -> Identity:
        data = self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return Identity(
            uid=data["localId"],
            is_anonymous=False,
            email=data.get("email", email),
            id_token=data.get("idToken"),
            refresh_token=data.get("refreshToken"),
        )

    def verify_id_token(self, id_token: str) -> Identity:
        """Verifies a caller's ID token with the Admin SDK (default app)."""
        try:
            claims = firebase_auth.verify_id_token(id_token)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            logger.warning("Rejected ID token: %s", type(e).__name__)
            raise AuthenticationError(
                AuthErrorKind.BAD_CREDENTIALS, code="INVALID_ID_TOKEN"
            ) from e
        return identity_from_claims(claims["uid"], claims, id_token=id_token)


def _error_code(response: requests.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP_{response.status_code}"


class InMemoryIdentityProvider:
    """Test double for Firebase Auth with registered accounts and tokens."""

    def __init__(
        self,
        allow_anonymous: bool = True,
        max_failed_attempts: Optional[int] = None,
    ):
        self.allow_anonymous = allow_anonymous
        self.max_failed_attempts = max_failed_attempts
        self.accounts: Dict[str, tuple[str, str]] = {}
        self.custom_tokens: Dict[str, str] = {}
        self.id_tokens: Dict[str, Identity] = {}
        self.calls: List[str] = []
        self.failed_attempts = 0
        self._next_uid = 0

    def _new_uid(self) -> str:
        self._next_uid += 1
        return f"uid-{self._next_uid}"

    def register(self, email: str, password: str, uid: Optional[str] = None) -> str:
        uid = uid or self._new_uid()
        self.accounts[email] = (password, uid)
        return uid

    def issue_custom_token(self, uid: str) -> str:
        token = f"custom-token-{uid}"
        self.custom_tokens[token] = uid
        return token

    def _issue(self, identity: Identity) -> Identity:
        identity = replace(identity, id_token=f"id-token-{len(self.id_tokens) + 1}")
        self.id_tokens[identity.id_token] = identity
        return identity

    def _fail(self, code: str) -> None:
        self.failed_attempts += 1
        raise AuthenticationError(classify_auth_error(code), code=code)

    def _check_rate_limit(self) -> None:
        if (
            self.max_failed_attempts is not None
            and self.failed_attempts >= self.max_failed_attempts
        ):
            code = "TOO_MANY_ATTEMPTS_TRY_LATER"
            raise AuthenticationError(classify_auth_error(code), code=code)

    def sign_in_anonymously(self) -> Identity:
        self.calls.append("anonymous")
        if not self.allow_anonymous:
            self._fail("OPERATION_NOT_ALLOWED")
        return self._issue(Identity(uid=self._new_uid(), is_anonymous=True))

    def sign_in_with_custom_token(self, token: str) -> Identity:
        self.calls.append("custom_token")
        uid = self.custom_tokens.get(token)
        if uid is None:
            self._fail("INVALID_CUSTOM_TOKEN")
        return self._issue(Identity(uid=uid))

    def sign_in_with_email_and_password(self, email: str, password: str) -> Identity:
        self.calls.append("password")
        self._check_rate_limit()
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            self._fail("INVALID_LOGIN_CREDENTIALS")
        return self._issue(Identity(uid=account[1], email=email))

    def verify_id_token(self, id_token: str) -> Identity:
        identity = self.id_tokens.get(id_token)
        if identity is None:
            raise AuthenticationError(
                classify_auth_error("INVALID_ID_TOKEN"), code="INVALID_ID_TOKEN"
            )
        return identity


class CredentialStore(Protocol):
    def load(self) -> Optional[Identity]:
        ...

    def save(self, identity: Identity) -> None:
        ...

    def clear(self) -> None:
        ...


@dataclass
class FileCredentialStore:
    """Persists the signed-in identity as JSON between process runs."""

    path: str

    def load(self) -> Optional[Identity]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return Identity(**json.load(f))
        except (ValueError, TypeError) as e:
            logger.warning("Discarding unreadable credential file %s: %s", self.path, e)
            return None

    def save(self, identity: Identity) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        # Tokens are owner-readable only, from the moment the file exists.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(asdict(identity), f)

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)


class AuthSession:
    """
    Tracks the identity used for content operations.

    States move uninitialized -> initializing -> ready, and to signed_out on
    sign-out. Listeners fire when initialization completes and on every
    subsequent sign-in or sign-out.
    """

    def __init__(
        self,
        resolved: ResolvedConfig,
        provider: IdentityProvider,
        policy: AuthPolicy = AuthPolicy.CREDENTIAL_REQUIRED,
        persistence: PersistencePolicy = PersistencePolicy.SESSION,
        credential_store: Optional[CredentialStore] = None,
    ):
        if (
            policy == AuthPolicy.CREDENTIAL_REQUIRED
            and persistence == PersistencePolicy.LOCAL
        ):
            logger.warning(
                "Credential-required sessions are never persisted; using session "
                "persistence"
            )
            persistence = PersistencePolicy.SESSION

        self.resolved = resolved
        self.provider = provider
        self.policy = policy
        self.persistence = persistence
        self.credential_store = (
            credential_store if persistence == PersistencePolicy.LOCAL else None
        )
        self.state = AuthState.UNINITIALIZED
        self.identity: Optional[Identity] = None
        self.error: Optional[ContentError] = None
        self._listeners: List[AuthListener] = []
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self.state in (AuthState.READY, AuthState.SIGNED_OUT)

    @property
    def is_authorized(self) -> bool:
        return is_authorized(self.ready, self.identity, self.policy)

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set_identity(
        self, identity: Optional[Identity], state: AuthState = AuthState.READY
    ) -> None:
        with self._lock:
            self.identity = identity
            self.state = state
            listeners = list(self._listeners)
        for listener in listeners:
            listener(identity)

    def initialize(self) -> None:
        """
        Establishes the initial identity. Safe to call more than once.

        An invalid configuration skips all network calls and leaves the
        session ready with no identity and `error` set.
        """
        with self._lock:
            if self.state != AuthState.UNINITIALIZED:
                return
            self.state = AuthState.INITIALIZING

        if not self.resolved.is_valid:
            self.error = ConfigurationError(
                "Firebase configuration keys or project id are missing. Please "
                "ensure the environment variables are set."
            )
            logger.error("Auth not initialized: %s", self.error.message)
            self._set_identity(None)
            return

        identity = None
        try:
            if self.resolved.initial_auth_token:
                identity = self.provider.sign_in_with_custom_token(
                    self.resolved.initial_auth_token
                )
            elif self.credential_store and (restored := self.credential_store.load()):
                logger.info("Restored persisted session for %s", restored.uid)
                identity = restored
            elif self.policy == AuthPolicy.ANONYMOUS_ALLOWED:
                identity = self.provider.sign_in_anonymously()
        except AuthenticationError as e:
            logger.warning("Authentication failed: %s (%s)", e.auth_kind, e.code)
            self.error = e

        if identity is not None:
            self._persist(identity)
        self._set_identity(identity)

    def sign_in_with_password(self, email: str, password: str) -> Identity:
        """
        Interactive sign-in.

        Raises:
            AuthenticationError: The provider rejected the attempt; not retried.
        """
        try:
            identity = self.provider.sign_in_with_email_and_password(email, password)
        except AuthenticationError as e:
            logger.warning("Sign-in failed: %s (%s)", e.auth_kind, e.code)
            self.error = e
            raise

        self.error = None
        self._persist(identity)
        logger.info("Signed in as %s", identity.uid)
        self._set_identity(identity)
        return identity

    def sign_out(self) -> None:
        if self.credential_store:
            self.credential_store.clear()
        logger.info("Signed out")
        self._set_identity(None, state=AuthState.SIGNED_OUT)

    def _persist(self, identity: Identity) -> None:
        if self.credential_store:
            self.credential_store.save(identity)


@dataclass(frozen=True)
class RequestAuthContext:
    """Auth state of a single verified request (e.g. a callable function)."""

    identity: Optional[Identity]
    policy: AuthPolicy = AuthPolicy.CREDENTIAL_REQUIRED
    ready: bool = True

    @property
    def is_authorized(self) -> bool:
        return is_authorized(self.ready, self.identity, self.policy)
