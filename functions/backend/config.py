"""
Configuration and project resolution.

`Settings` reads the environment once. `resolve_config` turns the candidate
sources (hosted-preview injected globals, public build-time variables and the
pinned project literal) into the single `ResolvedConfig` that is handed to
every component.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from typing import Optional

from dacite import Config, from_dict
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.errors import ConfigurationError
from shared.firebase_constants import FALLBACK_NAMESPACE
from shared.json_utils import convert_keys

logger = logging.getLogger(__name__)

_UNSAFE_NAMESPACE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class ConfigSource(StrEnum):
    INJECTED = "injected"
    ENVIRONMENT = "environment"
    FALLBACK = "fallback"


class AuthPolicy(StrEnum):
    ANONYMOUS_ALLOWED = "anonymous_allowed"
    CREDENTIAL_REQUIRED = "credential_required"


class PersistencePolicy(StrEnum):
    SESSION = "session"
    LOCAL = "local"


class FeatureStrategy(StrEnum):
    TWO_PHASE = "two_phase"
    ATOMIC_BATCH = "atomic_batch"


class Settings(BaseSettings):
    """Environment-backed settings for the content service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(
        default="INFO", validation_alias=AliasChoices("GOGFATHER_LOG_LEVEL")
    )

    # Public build-time Firebase web config
    firebase_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("NEXT_PUBLIC_FIREBASE_API_KEY")
    )
    firebase_auth_domain: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("NEXT_PUBLIC_FIREBASE_AUTH_DOMAIN"),
    )
    firebase_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("NEXT_PUBLIC_FIREBASE_PROJECT_ID"),
    )
    firebase_app_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("NEXT_PUBLIC_FIREBASE_APP_ID")
    )

    # Hosted-preview injected globals
    canvas_app_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("CANVAS_APP_ID")
    )
    canvas_firebase_config: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("CANVAS_FIREBASE_CONFIG")
    )
    canvas_initial_auth_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("CANVAS_INITIAL_AUTH_TOKEN")
    )

    # Resolution behavior
    pinned_project_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GOGFATHER_PINNED_PROJECT_ID")
    )
    strict_injected_config: bool = Field(
        default=False,
        validation_alias=AliasChoices("GOGFATHER_STRICT_INJECTED_CONFIG"),
    )
    config_source: Optional[ConfigSource] = Field(
        default=None, validation_alias=AliasChoices("GOGFATHER_CONFIG_SOURCE")
    )

    # Auth
    auth_policy: AuthPolicy = Field(
        default=AuthPolicy.CREDENTIAL_REQUIRED,
        validation_alias=AliasChoices("GOGFATHER_AUTH_POLICY"),
    )
    auth_persistence: PersistencePolicy = Field(
        default=PersistencePolicy.SESSION,
        validation_alias=AliasChoices("GOGFATHER_AUTH_PERSISTENCE"),
    )
    credential_store_path: str = Field(
        default=".gogfather/session.json",
        validation_alias=AliasChoices("GOGFATHER_CREDENTIAL_STORE_PATH"),
    )
    auth_emulator_host: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("FIREBASE_AUTH_EMULATOR_HOST")
    )

    # Mutations
    feature_strategy: FeatureStrategy = Field(
        default=FeatureStrategy.TWO_PHASE,
        validation_alias=AliasChoices("GOGFATHER_FEATURE_STRATEGY"),
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices("GOGFATHER_USE_IN_MEMORY_BACKENDS"),
    )

    def environment_config(self) -> "EnvironmentConfig":
        return EnvironmentConfig(
            api_key=self.firebase_api_key,
            auth_domain=self.firebase_auth_domain,
            project_id=self.firebase_project_id,
            app_id=self.firebase_app_id,
        )

    def injected_globals(self) -> Optional["InjectedGlobals"]:
        """The injected source is present only when an app id was injected."""
        if self.canvas_app_id is None:
            return None
        return InjectedGlobals(
            raw_app_id=self.canvas_app_id,
            firebase_config_json=self.canvas_firebase_config,
            initial_auth_token=self.canvas_initial_auth_token,
        )


@dataclass(frozen=True)
class FirebaseConfig:
    """Firebase web config; unknown keys in the source JSON are ignored."""

    api_key: Optional[str] = None
    auth_domain: Optional[str] = None
    project_id: Optional[str] = None
    app_id: Optional[str] = None
    storage_bucket: Optional[str] = None
    messaging_sender_id: Optional[str] = None


@dataclass(frozen=True)
class EnvironmentConfig:
    api_key: Optional[str] = None
    auth_domain: Optional[str] = None
    project_id: Optional[str] = None
    app_id: Optional[str] = None


@dataclass(frozen=True)
class InjectedGlobals:
    raw_app_id: str
    firebase_config_json: Optional[str] = None
    initial_auth_token: Optional[str] = None


@dataclass(frozen=True)
class ResolvedConfig:
    source: ConfigSource
    namespace: str
    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
    initial_auth_token: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.firebase.api_key)

    @property
    def has_namespace(self) -> bool:
        return self.namespace != FALLBACK_NAMESPACE

    @property
    def is_valid(self) -> bool:
        return self.has_credentials and self.has_namespace

    def require_valid(self) -> None:
        if not self.is_valid:
            raise ConfigurationError(
                "Firebase configuration keys are missing. Set "
                "NEXT_PUBLIC_FIREBASE_API_KEY and NEXT_PUBLIC_FIREBASE_PROJECT_ID."
            )


def sanitize_namespace(raw_id: Optional[str]) -> str:
    """Replaces every character outside [A-Za-z0-9_-] with '-'."""
    if not raw_id:
        return FALLBACK_NAMESPACE
    return _UNSAFE_NAMESPACE_CHARS.sub("-", raw_id)


def _parse_injected_config(raw_json: Optional[str]) -> FirebaseConfig:
    data = json.loads(raw_json) if raw_json else None
    if not isinstance(data, dict):
        raise ValueError("injected Firebase config is not a JSON object")
    return from_dict(
        data_class=FirebaseConfig,
        data=convert_keys(data, "camel_to_snake"),
        config=Config(check_types=False),
    )


def resolve_config(
    environment: EnvironmentConfig,
    injected: Optional[InjectedGlobals] = None,
    *,
    pinned_project_id: Optional[str] = None,
    strict_injected_config: bool = False,
    source: Optional[ConfigSource] = None,
) -> ResolvedConfig:
    """
    Picks the active Firebase project configuration.

    Preference is injected globals, then the environment, then the fallback.
    `source` pins a single source instead of the layered order.

    Raises:
        ConfigurationError: The injected config JSON is malformed and
            `strict_injected_config` is set.
    """
    use_injected = source in (None, ConfigSource.INJECTED)
    use_environment = source in (None, ConfigSource.ENVIRONMENT)

    if injected is not None and use_injected:
        try:
            firebase_config = _parse_injected_config(injected.firebase_config_json)
        except ValueError as e:
            if strict_injected_config:
                raise ConfigurationError(
                    f"Injected Firebase configuration is malformed: {e}"
                ) from e
            logger.warning(
                "Ignoring malformed injected Firebase configuration: %s", e
            )
        else:
            raw_namespace = (
                environment.project_id or pinned_project_id or injected.raw_app_id
            )
            return ResolvedConfig(
                source=ConfigSource.INJECTED,
                namespace=sanitize_namespace(raw_namespace),
                firebase=firebase_config,
                initial_auth_token=injected.initial_auth_token,
            )

    if use_environment and environment.api_key and environment.project_id:
        return ResolvedConfig(
            source=ConfigSource.ENVIRONMENT,
            namespace=sanitize_namespace(environment.project_id),
            firebase=FirebaseConfig(
                api_key=environment.api_key,
                auth_domain=environment.auth_domain,
                project_id=environment.project_id,
                app_id=environment.app_id,
            ),
        )

    logger.warning(
        "No Firebase configuration found; falling back to namespace %r",
        FALLBACK_NAMESPACE,
    )
    return ResolvedConfig(source=ConfigSource.FALLBACK, namespace=FALLBACK_NAMESPACE)


def resolve_from_settings(settings: Settings) -> ResolvedConfig:
    return resolve_config(
        settings.environment_config(),
        settings.injected_globals(),
        pinned_project_id=settings.pinned_project_id,
        strict_injected_config=settings.strict_injected_config,
        source=settings.config_source,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
