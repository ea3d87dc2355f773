"""Auth request, result and token-claim models."""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.user import User


class TokenKind(str, Enum):
    """Which secret and lifetime a JWT was issued with."""

    ACCESS = "access"
    REFRESH = "refresh"


class AccessTokenClaims(BaseModel):
    """Identity claims carried by a short-lived access token."""

    sub: UUID
    email: str
    username: str
    full_name: str


class RefreshTokenClaims(BaseModel):
    """Claims carried by a long-lived refresh token."""

    sub: UUID


class LoginRequest(BaseModel):
    """Login credentials.

    Either ``username`` or ``email`` identifies the account; the check that
    at least one is present happens in the session service so that the
    error message matches every other entry point.

    Attributes:
        username: Account username (case-insensitive)
        email: Account email (case-insensitive)
        password: Plain-text password
    """

    username: Optional[str] = None
    email: Optional[str] = None
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    """Refresh token supplied in the body when no cookie is present."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")


class ChangePasswordRequest(BaseModel):
    """Request to change the current user's password.

    Attributes:
        old_password: Current password, verified before the change
        new_password: Replacement password (must not be blank)
    """

    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)

    @field_validator("new_password")
    @classmethod
    def password_not_blank(cls, v: str) -> str:
        """Ensure password is not empty or whitespace only."""
        if not v.strip():
            raise ValueError("Password cannot be empty or whitespace only")
        return v


class UpdateAccountRequest(BaseModel):
    """Profile fields to change; only provided fields are updated."""

    full_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class TokenPair(BaseModel):
    """Freshly issued access and refresh tokens."""

    access_token: str
    refresh_token: str


class LoginResult(TokenPair):
    """Successful login: sanitized user plus a new token pair."""

    user: User
