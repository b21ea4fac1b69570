"""
User and wallet persistence for MongoDB plus in-memory test implementations.

Records are snake_case dataclasses; documents in the ``users`` and
``privy_wallets`` collections use camelCase field names.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, Optional, Protocol

from dacite import Config, from_dict
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from betnad.database import MongoConnector
from betnad.errors import RecordExists, StorageUnavailable
from betnad.json_utils import convert_keys

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
WALLETS_COLLECTION = "privy_wallets"

# Fields a caller may never overwrite through ``update``.
_IMMUTABLE_FIELDS = {"id", "uid", "user_id", "created_at", "updated_at"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _record_from_document(data_class, document: dict):
    data = convert_keys(dict(document), "camel_to_snake")
    object_id = data.pop("_id", None)
    if object_id is not None:
        data["id"] = str(object_id)
    return from_dict(data_class=data_class, data=data, config=Config(check_types=False))


def _document_from_record(record) -> dict:
    data = asdict(record)
    data.pop("id", None)
    return convert_keys(
        {key: value for key, value in data.items() if value is not None},
        "snake_to_camel",
    )


def _checked_changes(data_class, changes: dict) -> dict:
    known = {f.name for f in fields(data_class)}
    unknown = set(changes) - known
    if unknown:
        raise TypeError(f"Unknown {data_class.__name__} fields: {sorted(unknown)}")
    blocked = set(changes) & _IMMUTABLE_FIELDS
    if blocked:
        raise TypeError(f"Immutable {data_class.__name__} fields: {sorted(blocked)}")
    return changes


@dataclass
class User:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    wallet_address: Optional[str] = None
    twitter_id: Optional[str] = None
    twitter_username: Optional[str] = None
    twitter_access_token: Optional[str] = None
    twitter_refresh_token: Optional[str] = None
    twitter_token_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[str] = None

    def as_document(self) -> dict:
        """camelCase document holding only the fields that carry a value."""
        return _document_from_record(self)

    @classmethod
    def from_document(cls, document: dict) -> "User":
        return _record_from_document(cls, document)


@dataclass
class Wallet:
    user_id: str
    privy_wallet_id: str
    address: str
    chain_type: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[str] = None

    def as_document(self) -> dict:
        return _document_from_record(self)

    @classmethod
    def from_document(cls, document: dict) -> "Wallet":
        return _record_from_document(cls, document)


class UserStore(Protocol):
    """Operations the routes need on the ``users`` collection."""

    def ensure_indexes(self) -> None:
        ...

    def find_by_uid(self, uid: str) -> Optional[User]:
        ...

    def create(self, user: User) -> User:
        ...

    def create_or_update(self, user: User) -> User:
        ...

    def update(self, uid: str, **changes) -> Optional[User]:
        ...

    def delete(self, uid: str) -> bool:
        ...


class WalletStore(Protocol):
    """Operations on the ``privy_wallets`` collection, keyed by user id."""

    def ensure_indexes(self) -> None:
        ...

    def find_one(self, **query) -> Optional[Wallet]:
        ...

    def find_by_user_id(self, user_id: str) -> Optional[Wallet]:
        ...

    def create(self, wallet: Wallet) -> Wallet:
        ...

    def update(self, user_id: str, **changes) -> Optional[Wallet]:
        ...

    def delete(self, user_id: str) -> bool:
        ...


class InMemoryUserStore:
    """Simple in-memory user store for development and tests."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.users: Dict[str, User] = {}
        self.clock = clock
        self._lock = threading.Lock()

    def ensure_indexes(self) -> None:
        return None

    def reset(self) -> None:
        with self._lock:
            self.users.clear()

    def find_by_uid(self, uid: str) -> Optional[User]:
        with self._lock:
            user = self.users.get(uid)
            return replace(user) if user else None

    def _insert(self, user: User) -> User:
        now = self.clock()
        stored = replace(
            user,
            id=uuid.uuid4().hex,
            email=user.email if user.email is not None else "",
            created_at=user.created_at or now,
            updated_at=now,
        )
        self.users[user.uid] = stored
        return replace(stored)

    def create(self, user: User) -> User:
        with self._lock:
            if user.uid in self.users:
                raise RecordExists("User already exists")
            return self._insert(user)

    def create_or_update(self, user: User) -> User:
        with self._lock:
            existing = self.users.get(user.uid)
            if existing is None:
                return self._insert(user)
            changes = {
                f.name: getattr(user, f.name)
                for f in fields(User)
                if f.name not in _IMMUTABLE_FIELDS
                and getattr(user, f.name) is not None
            }
            stored = replace(existing, **changes, updated_at=self.clock())
            self.users[user.uid] = stored
            return replace(stored)

    def update(self, uid: str, **changes) -> Optional[User]:
        _checked_changes(User, changes)
        with self._lock:
            existing = self.users.get(uid)
            if existing is None:
                return None
            stored = replace(existing, **changes, updated_at=self.clock())
            self.users[uid] = stored
            return replace(stored)

    def delete(self, uid: str) -> bool:
        with self._lock:
            return self.users.pop(uid, None) is not None


class InMemoryWalletStore:
    """Simple in-memory wallet store for development and tests."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.wallets: Dict[str, Wallet] = {}
        self.clock = clock
        self._lock = threading.Lock()

    def ensure_indexes(self) -> None:
        return None

    def reset(self) -> None:
        with self._lock:
            self.wallets.clear()

    def find_one(self, **query) -> Optional[Wallet]:
        with self._lock:
            for wallet in self.wallets.values():
                if all(getattr(wallet, key, None) == value for key, value in query.items()):
                    return replace(wallet)
        return None

    def find_by_user_id(self, user_id: str) -> Optional[Wallet]:
        return self.find_one(user_id=user_id)

    def create(self, wallet: Wallet) -> Wallet:
        with self._lock:
            if wallet.user_id in self.wallets:
                raise RecordExists("Wallet already exists")
            now = self.clock()
            stored = replace(wallet, id=uuid.uuid4().hex, created_at=now, updated_at=now)
            self.wallets[wallet.user_id] = stored
            return replace(stored)

    def update(self, user_id: str, **changes) -> Optional[Wallet]:
        _checked_changes(Wallet, changes)
        with self._lock:
            existing = self.wallets.get(user_id)
            if existing is None:
                return None
            stored = replace(existing, **changes, updated_at=self.clock())
            self.wallets[user_id] = stored
            return replace(stored)

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self.wallets.pop(user_id, None) is not None


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        logger.error("MongoDB %s failed: %s", operation, exc)
        raise StorageUnavailable() from exc


class MongoUserStore:
    """
    ``users`` collection access through pymongo.

    ``create_or_update`` is one ``find_one_and_update(..., upsert=True)``
    keyed on ``uid``; the unique index on ``uid`` keeps concurrent logins
    from inserting the same user twice.
    """

    def __init__(self, connector: MongoConnector, clock: Callable[[], datetime] = utcnow):
        self.connector = connector
        self.clock = clock
        self._last_stamp: Optional[datetime] = None
        self._stamp_lock = threading.Lock()

    def _timestamp(self) -> datetime:
        # BSON dates keep milliseconds only; two writes in the same
        # millisecond get consecutive stamps so updatedAt keeps increasing.
        # Holds per process, not across replicas.
        now = self.clock()
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        with self._stamp_lock:
            if self._last_stamp is not None and now <= self._last_stamp:
                now = self._last_stamp + timedelta(milliseconds=1)
            self._last_stamp = now
        return now

    @property
    def collection(self) -> Collection:
        return self.connector.get_database()[USERS_COLLECTION]

    def ensure_indexes(self) -> None:
        with _storage_errors("create users index"):
            self.collection.create_index("uid", unique=True)

    def find_by_uid(self, uid: str) -> Optional[User]:
        with _storage_errors("find user"):
            document = self.collection.find_one({"uid": uid})
        return User.from_document(document) if document else None

    def create(self, user: User) -> User:
        now = self._timestamp()
        document = user.as_document()
        document.setdefault("email", "")
        document.setdefault("createdAt", now)
        document["updatedAt"] = now
        with _storage_errors("insert user"):
            try:
                self.collection.insert_one(document)
            except DuplicateKeyError as exc:
                raise RecordExists("User already exists") from exc
        return User.from_document(document)

    def create_or_update(self, user: User) -> User:
        now = self._timestamp()
        document = user.as_document()
        document.pop("uid", None)
        document.pop("updatedAt", None)
        on_insert = {"createdAt": document.pop("createdAt", None) or now}
        if "email" not in document:
            on_insert["email"] = ""
        update = {"$set": {**document, "updatedAt": now}, "$setOnInsert": on_insert}

        with _storage_errors("upsert user"):
            try:
                stored = self._upsert(user.uid, update)
            except DuplicateKeyError:
                # Another request inserted the same uid first; the retry
                # matches that document and becomes a plain update.
                stored = self._upsert(user.uid, update)
        return User.from_document(stored)

    def _upsert(self, uid: str, update: dict) -> dict:
        return self.collection.find_one_and_update(
            {"uid": uid},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def update(self, uid: str, **changes) -> Optional[User]:
        _checked_changes(User, changes)
        fields_to_set = convert_keys(changes, "snake_to_camel")
        fields_to_set["updatedAt"] = self._timestamp()
        with _storage_errors("update user"):
            document = self.collection.find_one_and_update(
                {"uid": uid},
                {"$set": fields_to_set},
                return_document=ReturnDocument.AFTER,
            )
        return User.from_document(document) if document else None

    def delete(self, uid: str) -> bool:
        with _storage_errors("delete user"):
            result = self.collection.delete_one({"uid": uid})
        return result.deleted_count > 0


class MongoWalletStore:
    """``privy_wallets`` collection access through pymongo."""

    def __init__(self, connector: MongoConnector, clock: Callable[[], datetime] = utcnow):
        self.connector = connector
        self.clock = clock

    @property
    def collection(self) -> Collection:
        return self.connector.get_database()[WALLETS_COLLECTION]

    def ensure_indexes(self) -> None:
        with _storage_errors("create wallets index"):
            self.collection.create_index("userId", unique=True)

    def find_one(self, **query) -> Optional[Wallet]:
        with _storage_errors("find wallet"):
            document = self.collection.find_one(convert_keys(query, "snake_to_camel"))
        return Wallet.from_document(document) if document else None

    def find_by_user_id(self, user_id: str) -> Optional[Wallet]:
        return self.find_one(user_id=user_id)

    def create(self, wallet: Wallet) -> Wallet:
        now = self.clock()
        document = wallet.as_document()
        document["createdAt"] = now
        document["updatedAt"] = now
        with _storage_errors("insert wallet"):
            try:
                result = self.collection.insert_one(document)
            except DuplicateKeyError as exc:
                raise RecordExists("Wallet already exists") from exc
        if not result.inserted_id:
            raise StorageUnavailable("Failed to create wallet")
        document["_id"] = result.inserted_id
        return Wallet.from_document(document)

    def update(self, user_id: str, **changes) -> Optional[Wallet]:
        _checked_changes(Wallet, changes)
        fields_to_set = convert_keys(changes, "snake_to_camel")
        fields_to_set["updatedAt"] = self.clock()
        with _storage_errors("update wallet"):
            document = self.collection.find_one_and_update(
                {"userId": user_id},
                {"$set": fields_to_set},
                return_document=ReturnDocument.AFTER,
            )
        return Wallet.from_document(document) if document else None

    def delete(self, user_id: str) -> bool:
        with _storage_errors("delete wallet"):
            result = self.collection.delete_one({"userId": user_id})
        return result.deleted_count > 0
