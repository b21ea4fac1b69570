"""
Wallet provider adapter for Privy server wallets.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import requests

from betnad.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_TYPE = "ethereum"


@dataclass
class ProviderWallet:
    id: str
    address: str
    chain_type: str


class WalletProvider(Protocol):
    """Creates and looks up custodial wallets."""

    def create_wallet(self, chain_type: str = DEFAULT_CHAIN_TYPE) -> ProviderWallet:
        ...

    def get_wallet(self, wallet_id: str) -> ProviderWallet:
        ...


def _wallet_from_payload(payload: dict) -> ProviderWallet:
    try:
        return ProviderWallet(
            id=payload["id"],
            address=payload["address"],
            chain_type=payload.get("chain_type", DEFAULT_CHAIN_TYPE),
        )
    except (KeyError, TypeError) as exc:
        raise ProviderError("Unexpected wallet provider response") from exc


class PrivyClient:
    """
    Minimal REST client for the Privy wallets API.

    Requests authenticate with HTTP basic auth (app id / app secret) plus the
    ``privy-app-id`` header.
    """

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        *,
        base_url: str = "https://api.privy.io",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.configured:
            raise ProviderError("Wallet provider is not configured")
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                auth=(self.app_id, self.app_secret),
                headers={"privy-app-id": self.app_id},
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            logger.error("Privy %s %s failed: %s", method, path, exc)
            raise ProviderError() from exc
        except ValueError as exc:
            raise ProviderError("Unexpected wallet provider response") from exc

    def create_wallet(self, chain_type: str = DEFAULT_CHAIN_TYPE) -> ProviderWallet:
        payload = self._request("POST", "/v1/wallets", json={"chain_type": chain_type})
        wallet = _wallet_from_payload(payload)
        logger.info("Created Privy wallet %s (%s)", wallet.id, wallet.chain_type)
        return wallet

    def get_wallet(self, wallet_id: str) -> ProviderWallet:
        return _wallet_from_payload(self._request("GET", f"/v1/wallets/{wallet_id}"))


@dataclass
class InMemoryWalletProvider:
    """Test double issuing random addresses."""

    wallets: Dict[str, ProviderWallet] = field(default_factory=dict)

    def create_wallet(self, chain_type: str = DEFAULT_CHAIN_TYPE) -> ProviderWallet:
        wallet = ProviderWallet(
            id=uuid.uuid4().hex,
            address="0x" + secrets.token_hex(20),
            chain_type=chain_type,
        )
        self.wallets[wallet.id] = wallet
        return wallet

    def get_wallet(self, wallet_id: str) -> ProviderWallet:
        wallet = self.wallets.get(wallet_id)
        if wallet is None:
            raise ProviderError("Wallet not found")
        return wallet
