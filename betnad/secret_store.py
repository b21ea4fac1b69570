"""
Credential lookup and masked logging of the loaded configuration.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from betnad.config import Settings

logger = logging.getLogger(__name__)

SECRET_KEYS = (
    "FIREBASE_PRIVATE_KEY",
    "PRIVY_APP_ID",
    "PRIVY_APP_SECRET",
    "TWITTER_CLIENT_ID",
    "TWITTER_CLIENT_SECRET",
)


def mask_secret(value: Optional[str]) -> Optional[str]:
    """Keep the first and last four characters of long values, star the rest."""
    if not value:
        return None
    if len(value) <= 8:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 8) + value[-4:]


def redact_uri(uri: str) -> str:
    """Replace the password of a connection URI with ``****``."""
    if not uri:
        return uri
    parts = urlsplit(uri)
    if not parts.password:
        return uri
    userinfo = f"{parts.username}:****" if parts.username else "****"
    host = parts.netloc.rsplit("@", 1)[-1]
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{host}"))


class SecretStore:
    """
    Holds the provider credentials read from settings.

    Built once per process and handed to the clients that need credentials,
    instead of being read from a module-level singleton.
    """

    def __init__(self, settings: Settings):
        self._secrets: Dict[str, str] = {}
        for key in SECRET_KEYS:
            value = getattr(settings, key.lower(), "")
            if value:
                self._secrets[key] = value

    def get(self, key: str) -> Optional[str]:
        return self._secrets.get(key)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value

    def has(self, key: str) -> bool:
        return key in self._secrets

    def masked(self, key: str) -> Optional[str]:
        return mask_secret(self.get(key))

    def missing(self, keys=SECRET_KEYS) -> list[str]:
        return [key for key in keys if not self.has(key)]


def log_config(settings: Settings, secrets: SecretStore) -> None:
    logger.info("Configuration loaded:")
    logger.info("  Environment: %s", settings.app_env)
    logger.info("  Host/Port: %s:%s", settings.host, settings.port)
    logger.info("  Log Level: %s", settings.effective_log_level())
    logger.info("  MongoDB URI: %s", redact_uri(settings.mongodb_uri))
    logger.info("  MongoDB Database: %s", settings.mongodb_database)
    logger.info("  CORS Origin: %s", settings.cors_origin)
    logger.info("  In-memory backends: %s", settings.use_in_memory_backends)

    missing = secrets.missing()
    if missing:
        logger.warning("Missing credentials: %s", ", ".join(missing))

    if settings.is_development:
        logger.debug("Credentials (masked):")
        for key in SECRET_KEYS:
            if secrets.has(key):
                logger.debug("  %s: %s", key, secrets.masked(key))
