"""
Dependency wiring for the FastAPI app.

``build_services`` constructs every client once at startup. The resulting
``Services`` object lives on ``app.state`` and the ``get_*`` functions hand
its members to route handlers through ``Depends``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from betnad.config import Settings
from betnad.database import MongoConnector
from betnad.db import (
    InMemoryUserStore,
    InMemoryWalletStore,
    MongoUserStore,
    MongoWalletStore,
    UserStore,
    WalletStore,
)
from betnad.identity import FirebaseIdentityProvider, IdentityProvider, StaticIdentityProvider
from betnad.privy import InMemoryWalletProvider, PrivyClient, WalletProvider
from betnad.secret_store import SecretStore
from betnad.state_store import InMemoryOAuthStateStore, OAuthStateStore, RedisOAuthStateStore
from betnad.twitter_oauth import TwitterOAuthClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    secrets: SecretStore
    identity: IdentityProvider
    users: UserStore
    wallets: WalletStore
    wallet_provider: WalletProvider
    twitter: TwitterOAuthClient
    oauth_states: OAuthStateStore
    database: Optional[MongoConnector] = None

    def startup(self) -> None:
        if self.database is not None:
            self.database.connect()
        self.users.ensure_indexes()
        self.wallets.ensure_indexes()
        self.identity.initialize()

    def shutdown(self) -> None:
        if self.database is not None:
            self.database.close()


def build_services(settings: Settings) -> Services:
    secrets = SecretStore(settings)
    twitter = TwitterOAuthClient(
        client_id=secrets.get("TWITTER_CLIENT_ID") or "",
        client_secret=secrets.get("TWITTER_CLIENT_SECRET") or "",
        redirect_uri=settings.twitter_callback_url,
        scopes=settings.twitter_scopes,
    )
    if settings.redis_url:
        oauth_states: OAuthStateStore = RedisOAuthStateStore(url=settings.redis_url)
    else:
        oauth_states = InMemoryOAuthStateStore()

    if settings.use_in_memory_backends:
        logger.warning("Using in-memory backends; data is not persisted")
        return Services(
            settings=settings,
            secrets=secrets,
            identity=StaticIdentityProvider(),
            users=InMemoryUserStore(),
            wallets=InMemoryWalletStore(),
            wallet_provider=InMemoryWalletProvider(),
            twitter=twitter,
            oauth_states=oauth_states,
        )

    database = MongoConnector(
        settings.mongodb_uri,
        settings.mongodb_database,
        timeout_ms=settings.mongodb_timeout_ms,
    )
    return Services(
        settings=settings,
        secrets=secrets,
        identity=FirebaseIdentityProvider(
            settings.firebase_service_account(), app_name=settings.firebase_app_name
        ),
        users=MongoUserStore(database),
        wallets=MongoWalletStore(database),
        wallet_provider=PrivyClient(
            app_id=secrets.get("PRIVY_APP_ID") or "",
            app_secret=secrets.get("PRIVY_APP_SECRET") or "",
            base_url=settings.privy_api_url,
        ),
        twitter=twitter,
        oauth_states=oauth_states,
        database=database,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_identity(request: Request) -> IdentityProvider:
    return get_services(request).identity


def get_user_store(request: Request) -> UserStore:
    return get_services(request).users


def get_wallet_store(request: Request) -> WalletStore:
    return get_services(request).wallets


def get_wallet_provider(request: Request) -> WalletProvider:
    return get_services(request).wallet_provider


def get_twitter_client(request: Request) -> TwitterOAuthClient:
    return get_services(request).twitter


def get_oauth_state_store(request: Request) -> OAuthStateStore:
    return get_services(request).oauth_states


def get_app_settings(request: Request) -> Settings:
    return get_services(request).settings
