"""
HTTP routes for the BetNad backend API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from betnad.config import Settings
from betnad.db import User, UserStore, Wallet, WalletStore
from betnad.dependencies import (
    get_app_settings,
    get_identity,
    get_oauth_state_store,
    get_twitter_client,
    get_user_store,
    get_wallet_provider,
    get_wallet_store,
)
from betnad.errors import (
    BetnadError,
    InvalidOAuthState,
    RecordExists,
    StorageUnavailable,
    UserNotFound,
)
from betnad.identity import IdentityProvider
from betnad.privy import WalletProvider
from betnad.schemas import (
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    TwitterOAuthCallbackRequest,
    TwitterOAuthRefreshRequest,
    TwitterOAuthRefreshResponse,
    TwitterOAuthUrlResponse,
    UserResponse,
    VerifyTokenRequest,
    VerifyTokenResponse,
    WalletProvisionResponse,
    WalletRequest,
    WalletResponse,
)
from betnad.state_store import OAuthStateStore
from betnad.twitter_oauth import (
    TwitterOAuthClient,
    TwitterProfile,
    TwitterTokens,
    generate_pkce_pair,
    generate_state,
)

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
twitter_router = APIRouter(prefix="/twitter/oauth", tags=["twitter"])
wallet_router = APIRouter(prefix="/wallets", tags=["wallets"])

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _error_response(error: str, exc: Optional[Exception], fallback: str) -> JSONResponse:
    """Uniform failure envelope. Only ``BetnadError`` messages reach the caller."""
    message = exc.message if isinstance(exc, BetnadError) else fallback
    status_code = 503 if isinstance(exc, StorageUnavailable) else 400
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message).model_dump(),
    )


@auth_router.post(
    "/login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
def login(
    payload: LoginRequest,
    identity: IdentityProvider = Depends(get_identity),
    users: UserStore = Depends(get_user_store),
):
    """
    Verify a Firebase ID token and create or refresh the matching user.
    Nothing is written when verification fails.
    """
    try:
        decoded = identity.verify(payload.idToken)
        record = identity.fetch_user(decoded["uid"])
        user = users.create_or_update(identity.map_to_user(record))
    except BetnadError as exc:
        logger.warning("Login error: %s", exc)
        return _error_response("LOGIN_FAILED", exc, "Login failed")
    except Exception as exc:
        logger.exception("Unexpected login error")
        return _error_response("LOGIN_FAILED", exc, "Login failed")

    logger.info("User %s logged in", user.uid)
    return LoginResponse(
        success=True, user=UserResponse.from_user(user), message="Login successful"
    )


@auth_router.post(
    "/verify-token",
    response_model=VerifyTokenResponse,
    response_model_exclude_none=True,
)
def verify_token(
    payload: VerifyTokenRequest,
    identity: IdentityProvider = Depends(get_identity),
    users: UserStore = Depends(get_user_store),
):
    """
    Check a token against the identity provider and the local user table.
    Always answers 200; an unknown user is reported as ``valid: false``.
    """
    try:
        decoded = identity.verify(payload.idToken)
        user = users.find_by_uid(decoded["uid"])
    except BetnadError as exc:
        logger.warning("Token verification error: %s", exc)
        return VerifyTokenResponse(valid=False, message=exc.message)
    except Exception:
        logger.exception("Unexpected token verification error")
        return VerifyTokenResponse(valid=False, message="Token verification failed")

    if user is None:
        return VerifyTokenResponse(valid=False, message="User not found in database")
    return VerifyTokenResponse(
        valid=True, user=UserResponse.from_user(user), message="Token is valid"
    )


@auth_router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", timestamp=utc_timestamp(), service="auth-service")


def _twitter_not_configured() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error="TWITTER_NOT_CONFIGURED", message="Twitter login is not configured"
        ).model_dump(),
    )


@twitter_router.get(
    "/url", response_model=TwitterOAuthUrlResponse, responses=ERROR_RESPONSES
)
def twitter_oauth_url(
    twitter: TwitterOAuthClient = Depends(get_twitter_client),
    oauth_states: OAuthStateStore = Depends(get_oauth_state_store),
    settings: Settings = Depends(get_app_settings),
):
    if not twitter.configured:
        return _twitter_not_configured()

    verifier, challenge = generate_pkce_pair()
    state = generate_state()
    try:
        oauth_states.save(state, verifier, settings.oauth_state_ttl_seconds)
    except BetnadError as exc:
        logger.warning("Failed to store OAuth state: %s", exc)
        return _error_response("TWITTER_OAUTH_FAILED", exc, "Failed to start Twitter login")

    return TwitterOAuthUrlResponse(
        success=True, url=twitter.authorization_url(state, challenge), state=state
    )


def _twitter_user(
    uid: str, profile: TwitterProfile, tokens: TwitterTokens, linked: bool
) -> User:
    user = User(
        uid=uid,
        twitter_id=profile.id,
        twitter_username=profile.username,
        twitter_access_token=tokens.access_token,
        twitter_refresh_token=tokens.refresh_token,
        twitter_token_expires_at=tokens.expires_at(),
    )
    if not linked:
        # A Twitter-only account takes its profile from X.
        user.display_name = profile.name or profile.username
        user.photo_url = profile.profile_image_url
    return user


@twitter_router.post(
    "/callback",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
def twitter_oauth_callback(
    payload: TwitterOAuthCallbackRequest,
    twitter: TwitterOAuthClient = Depends(get_twitter_client),
    oauth_states: OAuthStateStore = Depends(get_oauth_state_store),
    identity: IdentityProvider = Depends(get_identity),
    users: UserStore = Depends(get_user_store),
):
    """
    Finish the OAuth flow. With an ``idToken`` the X account is linked to
    that Firebase user; without one the user is keyed on ``twitter:<id>``.
    """
    if not twitter.configured:
        return _twitter_not_configured()

    try:
        verifier = oauth_states.pop(payload.state)
        if verifier is None:
            raise InvalidOAuthState()
        linked_uid = None
        if payload.idToken:
            linked_uid = identity.verify(payload.idToken)["uid"]
        tokens = twitter.exchange_code(payload.code, verifier)
        profile = twitter.fetch_profile(tokens.access_token)
        uid = linked_uid or f"twitter:{profile.id}"
        user = users.create_or_update(
            _twitter_user(uid, profile, tokens, linked=linked_uid is not None)
        )
    except BetnadError as exc:
        logger.warning("Twitter callback error: %s", exc)
        return _error_response("TWITTER_LOGIN_FAILED", exc, "Twitter login failed")
    except Exception as exc:
        logger.exception("Unexpected Twitter callback error")
        return _error_response("TWITTER_LOGIN_FAILED", exc, "Twitter login failed")

    logger.info("Twitter user @%s signed in as %s", profile.username, user.uid)
    return LoginResponse(
        success=True,
        user=UserResponse.from_user(user),
        message="Twitter login successful",
    )


@twitter_router.post(
    "/refresh",
    response_model=TwitterOAuthRefreshResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
def twitter_oauth_refresh(
    payload: TwitterOAuthRefreshRequest,
    twitter: TwitterOAuthClient = Depends(get_twitter_client),
):
    if not twitter.configured:
        return _twitter_not_configured()
    try:
        tokens = twitter.refresh(payload.refreshToken)
    except BetnadError as exc:
        logger.warning("Twitter token refresh error: %s", exc)
        return _error_response("TWITTER_REFRESH_FAILED", exc, "Token refresh failed")
    except Exception as exc:
        logger.exception("Unexpected Twitter token refresh error")
        return _error_response("TWITTER_REFRESH_FAILED", exc, "Token refresh failed")

    return TwitterOAuthRefreshResponse(
        success=True,
        accessToken=tokens.access_token,
        refreshToken=tokens.refresh_token,
        expiresIn=tokens.expires_in,
        message="Token refreshed",
    )


def _provision_wallet(
    wallets: WalletStore, wallet_provider: WalletProvider, uid: str, chain_type: str
) -> tuple[Wallet, bool]:
    existing = wallets.find_by_user_id(uid)
    if existing is not None:
        return existing, False

    provider_wallet = wallet_provider.create_wallet(chain_type)
    try:
        wallet = wallets.create(
            Wallet(
                user_id=uid,
                privy_wallet_id=provider_wallet.id,
                address=provider_wallet.address,
                chain_type=provider_wallet.chain_type,
            )
        )
    except RecordExists:
        # A concurrent request stored a wallet for this user first.
        wallet = wallets.find_by_user_id(uid)
        if wallet is None:
            raise StorageUnavailable()
        return wallet, False
    return wallet, True


@wallet_router.post(
    "",
    response_model=WalletProvisionResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
def provision_wallet(
    payload: WalletRequest,
    identity: IdentityProvider = Depends(get_identity),
    users: UserStore = Depends(get_user_store),
    wallets: WalletStore = Depends(get_wallet_store),
    wallet_provider: WalletProvider = Depends(get_wallet_provider),
):
    """Return the caller's wallet, creating it through Privy on first use."""
    try:
        uid = identity.verify(payload.idToken)["uid"]
        user = users.find_by_uid(uid)
        if user is None:
            raise UserNotFound("User not found in database")
        wallet, created = _provision_wallet(wallets, wallet_provider, uid, payload.chainType)
        if user.wallet_address != wallet.address:
            users.update(uid, wallet_address=wallet.address)
    except BetnadError as exc:
        logger.warning("Wallet provisioning error: %s", exc)
        return _error_response("WALLET_PROVISION_FAILED", exc, "Wallet provisioning failed")
    except Exception as exc:
        logger.exception("Unexpected wallet provisioning error")
        return _error_response("WALLET_PROVISION_FAILED", exc, "Wallet provisioning failed")

    if created:
        logger.info("Provisioned %s wallet for user %s", wallet.chain_type, uid)
    return WalletProvisionResponse(
        success=True,
        wallet=WalletResponse.from_wallet(wallet),
        message="Wallet created" if created else "Wallet already exists",
    )
