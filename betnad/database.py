"""
MongoDB connection management.

A single ``MongoClient`` is opened at startup and shared by every request;
pymongo pools connections internally.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from betnad.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class MongoConnector:
    def __init__(
        self,
        uri: str,
        database_name: str,
        *,
        timeout_ms: int = 5000,
    ):
        self.uri = uri
        self.database_name = database_name
        self.timeout_ms = timeout_ms
        self._client: Optional[MongoClient] = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._client is not None

    def connect(self) -> Database:
        """Open the client once and return the database handle."""
        with self._lock:
            if self._client is None:
                client = MongoClient(
                    self.uri,
                    serverSelectionTimeoutMS=self.timeout_ms,
                    tz_aware=True,
                )
                try:
                    client.admin.command("ping")
                except PyMongoError as exc:
                    client.close()
                    logger.error("Failed to connect to MongoDB: %s", exc)
                    raise StorageUnavailable() from exc
                self._client = client
                logger.info("Connected to MongoDB database %s", self.database_name)
        return self._client[self.database_name]

    def get_database(self) -> Database:
        client = self._client
        if client is None:
            raise StorageUnavailable("Database not connected")
        return client[self.database_name]

    def ping(self) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            client.admin.command("ping")
        except PyMongoError:
            return False
        return True

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info("MongoDB connection closed")
