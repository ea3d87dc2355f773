"""Models package exports."""

from src.models.auth import (
    AccessTokenClaims,
    ChangePasswordRequest,
    LoginRequest,
    LoginResult,
    RefreshRequest,
    RefreshTokenClaims,
    TokenKind,
    TokenPair,
    UpdateAccountRequest,
)
from src.models.response import ApiErrorResponse, ApiResponse
from src.models.user import User

__all__ = [
    "AccessTokenClaims",
    "ApiErrorResponse",
    "ApiResponse",
    "ChangePasswordRequest",
    "LoginRequest",
    "LoginResult",
    "RefreshRequest",
    "RefreshTokenClaims",
    "TokenKind",
    "TokenPair",
    "UpdateAccountRequest",
    "User",
]
