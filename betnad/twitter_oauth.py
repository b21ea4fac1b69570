"""
Twitter / X OAuth 2.0 authorization-code flow with PKCE.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from urllib.parse import urlencode

import requests

from betnad.errors import ProviderError

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://twitter.com/i/oauth2/authorize"
TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
ME_URL = "https://api.twitter.com/2/users/me"


def generate_pkce_pair() -> Tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` using the S256 method."""
    verifier = secrets.token_urlsafe(64)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .decode()
        .rstrip("=")
    )
    return verifier, challenge


def generate_state() -> str:
    return secrets.token_urlsafe(16)


@dataclass
class TwitterTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    scope: Optional[str] = None

    def expires_at(self, now: Optional[datetime] = None) -> datetime:
        return (now or datetime.now(timezone.utc)) + timedelta(seconds=self.expires_in)


@dataclass
class TwitterProfile:
    id: str
    username: str
    name: Optional[str] = None
    profile_image_url: Optional[str] = None


class TwitterOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        scopes: str = "tweet.read users.read offline.access",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def authorization_url(self, state: str, code_challenge: str) -> str:
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "scope": self.scopes,
                "state": state,
                "code_challenge": code_challenge,
                "code_challenge_method": "S256",
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    def _basic_auth_header(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode()

    def _token_request(self, data: dict) -> TwitterTokens:
        try:
            response = self.session.post(
                TOKEN_URL,
                data={**data, "client_id": self.client_id},
                headers={
                    "Authorization": self._basic_auth_header(),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                timeout=self.timeout,
            )
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Twitter token request failed: %s", exc)
            raise ProviderError("Twitter token request failed") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not response.ok or not access_token:
            logger.warning(
                "Twitter token request rejected (%s): %s",
                response.status_code,
                payload,
            )
            raise ProviderError("Failed to retrieve Twitter access token")
        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Twitter token response has invalid expires_in: %r",
                payload.get("expires_in"),
            )
            raise ProviderError("Failed to retrieve Twitter access token") from exc
        return TwitterTokens(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=expires_in,
            scope=payload.get("scope"),
        )

    def exchange_code(self, code: str, code_verifier: str) -> TwitterTokens:
        return self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
                "code_verifier": code_verifier,
            }
        )

    def refresh(self, refresh_token: str) -> TwitterTokens:
        return self._token_request(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"}
        )

    def fetch_profile(self, access_token: str) -> TwitterProfile:
        try:
            response = self.session.get(
                ME_URL,
                params={"user.fields": "profile_image_url,name"},
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json().get("data") or {}
        except (requests.RequestException, ValueError, AttributeError) as exc:
            logger.error("Twitter profile request failed: %s", exc)
            raise ProviderError("Twitter profile request failed") from exc

        if not data.get("id"):
            raise ProviderError("Twitter profile response missing user id")
        image_url = data.get("profile_image_url") or None
        if image_url:
            # "_normal" is the 48x48 variant; dropping it yields the original.
            image_url = image_url.replace("_normal", "")
        return TwitterProfile(
            id=str(data["id"]),
            username=data.get("username", ""),
            name=data.get("name"),
            profile_image_url=image_url,
        )
