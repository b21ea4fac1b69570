"""
Error taxonomy shared by adapters, stores and routes.

Messages passed to these exceptions are returned to API callers, so they
must stay short and free of internal detail. Chain the underlying error
with ``raise ... from exc`` instead.
"""

from __future__ import annotations


class BetnadError(Exception):
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidToken(BetnadError):
    default_message = "Invalid or expired token"


class UserNotFound(BetnadError):
    default_message = "User not found"


class StorageUnavailable(BetnadError):
    default_message = "Storage unavailable"


class ProviderError(BetnadError):
    default_message = "Upstream provider request failed"


class InvalidOAuthState(BetnadError):
    default_message = "Invalid or expired OAuth state"


class RecordExists(BetnadError):
    default_message = "Record already exists"
