"""
Pydantic schemas for the BetNad API.

Field names follow the camelCase wire format the frontend consumes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from betnad.db import User, Wallet


class TokenRequest(BaseModel):
    idToken: str = Field(..., min_length=1)


class LoginRequest(TokenRequest):
    pass


class VerifyTokenRequest(TokenRequest):
    pass


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    uid: str
    email: str = ""
    displayName: Optional[str] = None
    photoURL: Optional[str] = None
    walletAddress: Optional[str] = None
    twitterId: Optional[str] = None
    twitterUsername: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        # OAuth tokens stay server-side.
        return cls(
            id=user.id,
            uid=user.uid,
            email=user.email or "",
            displayName=user.display_name,
            photoURL=user.photo_url,
            walletAddress=user.wallet_address,
            twitterId=user.twitter_id,
            twitterUsername=user.twitter_username,
            createdAt=user.created_at,
            updatedAt=user.updated_at,
        )


class LoginResponse(BaseModel):
    success: bool
    user: UserResponse
    message: Optional[str] = None


class VerifyTokenResponse(BaseModel):
    valid: bool
    user: Optional[UserResponse] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service: str


class RootResponse(BaseModel):
    message: str
    version: str
    status: str
    timestamp: str


class TwitterOAuthUrlResponse(BaseModel):
    success: bool
    url: str
    state: str


class TwitterOAuthCallbackRequest(BaseModel):
    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    idToken: Optional[str] = None


class TwitterOAuthRefreshRequest(BaseModel):
    refreshToken: str = Field(..., min_length=1)


class TwitterOAuthRefreshResponse(BaseModel):
    success: bool
    accessToken: str
    refreshToken: Optional[str] = None
    expiresIn: int
    message: Optional[str] = None


class WalletRequest(TokenRequest):
    chainType: str = Field(default="ethereum", min_length=1)


class WalletResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    userId: str
    privyWalletId: str
    address: str
    chainType: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_wallet(cls, wallet: Wallet) -> "WalletResponse":
        return cls(
            id=wallet.id,
            userId=wallet.user_id,
            privyWalletId=wallet.privy_wallet_id,
            address=wallet.address,
            chainType=wallet.chain_type,
            createdAt=wallet.created_at,
            updatedAt=wallet.updated_at,
        )


class WalletProvisionResponse(BaseModel):
    success: bool
    wallet: WalletResponse
    message: Optional[str] = None
