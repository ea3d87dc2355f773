"""FastAPI dependencies for services and request authentication."""

from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.config import Settings, get_settings
from src.errors import AuthError, InvalidTokenError
from src.models.user import User
from src.services.auth_service import AuthService
from src.services.media_service import MediaService
from src.services.session_service import SessionService
from src.services.user_service import UserService

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

# auto_error off: a missing header is fine when the cookie carries the token
bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(settings: Settings = Depends(get_settings)) -> AuthService:
    return AuthService(settings)


async def get_media_service(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[MediaService]:
    """Yield a request-scoped media client, closing its HTTP client afterwards."""
    media = MediaService(settings)
    try:
        yield media
    finally:
        await media.close()


def get_user_service() -> UserService:
    return UserService()


def get_session_service(
    users: UserService = Depends(get_user_service),
    auth: AuthService = Depends(get_auth_service),
    media: MediaService = Depends(get_media_service),
) -> SessionService:
    return SessionService(users=users, auth=auth, media=media)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
    user_service: UserService = Depends(get_user_service),
) -> User:
    """Resolve the access token on the request to a sanitized user.

    The ``accessToken`` cookie takes precedence over an
    ``Authorization: Bearer`` header. The resolved user is also attached to
    ``request.state.user`` for downstream handlers.

    Returns:
        Authenticated User model

    Raises:
        AuthError: If the token is missing, invalid, expired, or the user is gone
    """
    token = request.cookies.get(ACCESS_TOKEN_COOKIE) or (
        credentials.credentials if credentials else None
    )
    if not token:
        raise AuthError("Unauthorized request")

    try:
        claims = auth_service.verify_access_token(token)
    except InvalidTokenError as e:
        logger.info("access_token_rejected", expired=e.expired)
        raise AuthError("Invalid access token") from e

    user = await user_service.get_by_id(claims.sub)
    if user is None:
        logger.warning("access_token_user_missing", user_id=str(claims.sub))
        raise AuthError("Invalid access token")

    request.state.user = user
    structlog.contextvars.bind_contextvars(user_id=str(user.id))
    return user
