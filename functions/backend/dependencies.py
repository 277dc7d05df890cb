"""
Service wiring for the FastAPI app.

Everything is built once from `Settings` and the resolved configuration, and
stored on `app.state`; route dependencies read it from the request. The shared
`AuthSession` backs the read subscriptions only. Writes are authorized per
request from the caller's ID token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import Request

from backend.auth import (
    AuthSession,
    CredentialStore,
    FileCredentialStore,
    Identity,
    IdentityProvider,
    IdentityToolkitProvider,
    InMemoryIdentityProvider,
    RequestAuthContext,
)
from backend.config import ResolvedConfig, Settings, resolve_from_settings
from backend.mutator import ContentMutator
from backend.store import DocumentStore, FirestoreDocumentStore, InMemoryDocumentStore
from backend.sync import ContentSync

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    resolved: ResolvedConfig
    store: Optional[DocumentStore]
    identity_provider: IdentityProvider
    auth: AuthSession
    sync: ContentSync
    _remove_auth_listener: Optional[Callable[[], None]] = field(
        default=None, repr=False
    )

    def start(self) -> None:
        """Signs in and opens the subscriptions once auth is ready."""
        if self._remove_auth_listener is None:
            self._remove_auth_listener = self.auth.on_auth_state_changed(
                self._on_auth_state_changed
            )
        self.auth.initialize()
        self.sync.start(self.auth)

    def _on_auth_state_changed(self, identity: Optional[Identity]) -> None:
        self.sync.start(self.auth)

    def mutator_for(self, auth_context: RequestAuthContext) -> ContentMutator:
        """A mutator acting for one request's verified caller."""
        return ContentMutator(
            self.store,
            self.resolved,
            auth_context,
            feature_strategy=self.settings.feature_strategy,
        )

    def stop(self) -> None:
        self.sync.stop()
        if self._remove_auth_listener is not None:
            self._remove_auth_listener()
            self._remove_auth_listener = None


def _default_store(
    settings: Settings, resolved: ResolvedConfig
) -> Optional[DocumentStore]:
    if settings.use_in_memory_backends:
        return InMemoryDocumentStore()
    if not resolved.is_valid:
        logger.error(
            "Firebase project is not configured (namespace %r); content is "
            "unavailable",
            resolved.namespace,
        )
        return None
    return FirestoreDocumentStore.from_project(resolved.firebase.project_id)


def _default_identity_provider(
    settings: Settings, resolved: ResolvedConfig
) -> IdentityProvider:
    if settings.use_in_memory_backends:
        return InMemoryIdentityProvider()
    return IdentityToolkitProvider(
        api_key=resolved.firebase.api_key or "",
        emulator_host=settings.auth_emulator_host,
    )


def build_services(
    settings: Settings,
    *,
    store: Optional[DocumentStore] = None,
    identity_provider: Optional[IdentityProvider] = None,
    credential_store: Optional[CredentialStore] = None,
) -> Services:
    resolved = resolve_from_settings(settings)
    logger.info(
        "Resolved Firebase configuration from %s (namespace %s)",
        resolved.source,
        resolved.namespace,
    )
    if store is None:
        store = _default_store(settings, resolved)
    if identity_provider is None:
        identity_provider = _default_identity_provider(settings, resolved)
    if credential_store is None:
        credential_store = FileCredentialStore(settings.credential_store_path)

    auth = AuthSession(
        resolved,
        identity_provider,
        policy=settings.auth_policy,
        persistence=settings.auth_persistence,
        credential_store=credential_store,
    )
    return Services(
        settings=settings,
        resolved=resolved,
        store=store,
        identity_provider=identity_provider,
        auth=auth,
        sync=ContentSync(store, resolved),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
