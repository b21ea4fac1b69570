"""
Identity provider adapter: Firebase ID-token verification and user lookup.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import firebase_admin
from firebase_admin import auth, credentials
from firebase_admin.exceptions import FirebaseError

from betnad.db import User
from betnad.errors import InvalidToken, ProviderError, UserNotFound

logger = logging.getLogger(__name__)

# firebase_admin keeps its apps in a process-wide registry.
_init_lock = threading.Lock()


class IdentityProvider(Protocol):
    """Verifies bearer tokens and resolves provider user records."""

    def initialize(self) -> None:
        ...

    def verify(self, token: str) -> Dict[str, Any]:
        ...

    def fetch_user(self, uid: str) -> Any:
        ...

    def map_to_user(self, record: Any) -> User:
        ...


def _from_millis(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def map_provider_user(record: Any) -> User:
    """
    Map a Firebase ``UserRecord`` (or anything with the same attributes)
    to a ``User``. Missing optional fields become ``None``; a missing email
    becomes an empty string.
    """
    metadata = getattr(record, "user_metadata", None)
    created_at = _from_millis(getattr(metadata, "creation_timestamp", None))
    last_sign_in = _from_millis(getattr(metadata, "last_sign_in_timestamp", None))
    return User(
        uid=record.uid,
        email=getattr(record, "email", None) or "",
        display_name=getattr(record, "display_name", None) or None,
        photo_url=getattr(record, "photo_url", None) or None,
        created_at=created_at,
        updated_at=last_sign_in or created_at,
    )


class FirebaseIdentityProvider:
    """
    Firebase Admin SDK wrapper bound to a named app.

    ``initialize`` may be called any number of times; the named app is
    created once per process and reused afterwards.
    """

    def __init__(self, service_account: dict, app_name: str = "betnad"):
        self.service_account = service_account
        self.app_name = app_name
        self._app: Optional[firebase_admin.App] = None

    @property
    def app(self) -> firebase_admin.App:
        if self._app is None:
            self.initialize()
        return self._app

    def initialize(self) -> None:
        if self._app is not None:
            return
        with _init_lock:
            try:
                self._app = firebase_admin.get_app(self.app_name)
            except ValueError:
                cred = credentials.Certificate(self.service_account)
                self._app = firebase_admin.initialize_app(cred, name=self.app_name)
                logger.info("Firebase Admin SDK initialized (app=%s)", self.app_name)

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            return auth.verify_id_token(token, app=self.app)
        except auth.CertificateFetchError as exc:
            logger.error("Firebase certificate fetch failed: %s", exc)
            raise ProviderError() from exc
        except (ValueError, auth.InvalidIdTokenError, auth.UserDisabledError) as exc:
            logger.warning("Firebase token verification failed: %s", exc)
            raise InvalidToken() from exc

    def fetch_user(self, uid: str) -> auth.UserRecord:
        try:
            return auth.get_user(uid, app=self.app)
        except (ValueError, auth.UserNotFoundError) as exc:
            logger.warning("Failed to get user by UID %s: %s", uid, exc)
            raise UserNotFound() from exc
        except FirebaseError as exc:
            logger.error("Firebase user lookup failed: %s", exc)
            raise ProviderError() from exc

    def map_to_user(self, record: auth.UserRecord) -> User:
        return map_provider_user(record)


@dataclass
class ProviderUserMetadata:
    creation_timestamp: Optional[int] = None
    last_sign_in_timestamp: Optional[int] = None


@dataclass
class ProviderUserRecord:
    """Attribute-compatible stand-in for ``firebase_admin.auth.UserRecord``."""

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    user_metadata: ProviderUserMetadata = field(default_factory=ProviderUserMetadata)


@dataclass
class StaticIdentityProvider:
    """In-memory identity provider for development and tests."""

    tokens: Dict[str, str] = field(default_factory=dict)
    records: Dict[str, ProviderUserRecord] = field(default_factory=dict)
    initialized: int = 0

    def initialize(self) -> None:
        self.initialized += 1

    def register(self, token: str, record: ProviderUserRecord) -> None:
        self.tokens[token] = record.uid
        self.records[record.uid] = record

    def verify(self, token: str) -> Dict[str, Any]:
        uid = self.tokens.get(token)
        if not token or uid is None:
            raise InvalidToken()
        record = self.records.get(uid)
        claims: Dict[str, Any] = {"uid": uid, "sub": uid}
        if record and record.email:
            claims["email"] = record.email
        return claims

    def fetch_user(self, uid: str) -> ProviderUserRecord:
        record = self.records.get(uid)
        if record is None:
            raise UserNotFound()
        return record

    def map_to_user(self, record: ProviderUserRecord) -> User:
        return map_provider_user(record)
