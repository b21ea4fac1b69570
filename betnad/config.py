"""
Configuration and settings for the BetNad backend.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal, NoReturn, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server
    app_env: Literal["development", "production", "test"] = "development"
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: Optional[Literal["error", "warning", "info", "debug"]] = None
    api_prefix: str = "/api"
    cors_origin: str = "http://localhost:3000"

    # MongoDB
    mongodb_uri: str = ""
    mongodb_database: str = "betnad"
    mongodb_timeout_ms: int = 5000

    # Firebase service account
    firebase_project_id: str = ""
    firebase_private_key_id: str = ""
    firebase_private_key: str = ""
    firebase_client_email: str = ""
    firebase_client_id: str = ""
    firebase_auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    firebase_token_uri: str = "https://oauth2.googleapis.com/token"
    firebase_auth_provider_x509_cert_url: str = (
        "https://www.googleapis.com/oauth2/v1/certs"
    )
    firebase_client_x509_cert_url: str = ""
    firebase_app_name: str = "betnad"

    # Privy
    privy_app_id: str = ""
    privy_app_secret: str = ""
    privy_api_url: str = "https://api.privy.io"

    # Twitter / X OAuth 2.0
    twitter_client_id: str = ""
    twitter_client_secret: str = ""
    twitter_callback_url: str = ""
    twitter_scopes: str = "tweet.read users.read offline.access"

    # OAuth state (Redis when configured)
    redis_url: Optional[str] = None
    oauth_state_ttl_seconds: int = 600

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="BETNAD_USE_IN_MEMORY_BACKENDS"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "warn":
                return "warning"
            return value or None
        return value

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "INFO" if self.is_production else "DEBUG"

    def firebase_service_account(self) -> dict:
        """Service-account dict in the shape ``credentials.Certificate`` expects."""
        return {
            "type": "service_account",
            "project_id": self.firebase_project_id,
            "private_key_id": self.firebase_private_key_id,
            # Keys copied into env files usually carry escaped newlines.
            "private_key": self.firebase_private_key.replace("\\n", "\n"),
            "client_email": self.firebase_client_email,
            "client_id": self.firebase_client_id,
            "auth_uri": self.firebase_auth_uri,
            "token_uri": self.firebase_token_uri,
            "auth_provider_x509_cert_url": self.firebase_auth_provider_x509_cert_url,
            "client_x509_cert_url": self.firebase_client_x509_cert_url,
        }


class RequiredSettings(BaseModel):
    """Keys that must be present before the service may start."""

    mongodb_uri: str = Field(min_length=1)
    firebase_project_id: str = Field(min_length=1)
    firebase_private_key: str = Field(min_length=1)
    firebase_client_email: str = Field(min_length=1)
    privy_app_id: str = Field(min_length=1)
    privy_app_secret: str = Field(min_length=1)
    twitter_client_id: str = Field(min_length=1)
    twitter_client_secret: str = Field(min_length=1)
    twitter_callback_url: str = Field(min_length=1)

    @field_validator("mongodb_uri")
    @classmethod
    def _mongodb_scheme(cls, value: str) -> str:
        if not value.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("must start with mongodb:// or mongodb+srv://")
        return value

    @field_validator("twitter_callback_url")
    @classmethod
    def _callback_scheme(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return value


_MISSING_ERROR_TYPES = {"missing", "string_too_short"}


def _env_name(loc: tuple) -> str:
    return ".".join(str(part) for part in loc).upper()


def _split_errors(exc: ValidationError) -> tuple[list[str], list[str]]:
    missing: list[str] = []
    invalid: list[str] = []
    for err in exc.errors():
        name = _env_name(err["loc"])
        if err["type"] in _MISSING_ERROR_TYPES:
            missing.append(name)
        else:
            invalid.append(f"{name}: {err['msg']}")
    return missing, invalid


def check_required_settings(settings: Settings) -> tuple[list[str], list[str]]:
    """
    Return ``(missing, invalid)`` env var descriptions for ``settings``.
    Both lists are empty when the configuration is complete.
    """
    data = settings.model_dump(include=set(RequiredSettings.model_fields))
    try:
        RequiredSettings.model_validate(data)
    except ValidationError as exc:
        return _split_errors(exc)
    return [], []


def _exit_with_report(missing: list[str], invalid: list[str]) -> NoReturn:
    logger.error("Environment validation failed:")
    if missing:
        logger.error("Missing required variables:")
        for name in missing:
            logger.error("  - %s", name)
    if invalid:
        logger.error("Invalid variables:")
        for entry in invalid:
            logger.error("  - %s", entry)
    logger.error(
        "Please check your .env file and ensure all required variables are set."
    )
    raise SystemExit(1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


def load_settings() -> Settings:
    """
    Load settings for a real process start.

    Exits with status 1 when the environment cannot be parsed or a required
    key is missing. In-memory mode skips the required-key check since no
    external provider is contacted.
    """
    try:
        settings = get_settings()
    except ValidationError as exc:
        _exit_with_report(*_split_errors(exc))

    if settings.use_in_memory_backends:
        return settings

    missing, invalid = check_required_settings(settings)
    if missing or invalid:
        _exit_with_report(missing, invalid)
    return settings
