"""User account API endpoints."""

from pathlib import Path
from typing import Any, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import JSONResponse

from src.api.dependencies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    get_current_user,
    get_session_service,
)
from src.config import Settings, get_settings
from src.errors import UploadError
from src.models.auth import (
    ChangePasswordRequest,
    LoginRequest,
    RefreshRequest,
    TokenPair,
    UpdateAccountRequest,
)
from src.models.response import ApiResponse
from src.models.user import User
from src.services.media_service import MediaService
from src.services.session_service import SessionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


def _respond(status_code: int, data: Any, message: str) -> JSONResponse:
    """Wrap data in the success envelope."""
    envelope = ApiResponse(status_code=status_code, data=data, message=message)
    return JSONResponse(status_code=status_code, content=envelope.to_content())


def _set_auth_cookies(response: JSONResponse, pair: TokenPair, settings: Settings) -> None:
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        pair.access_token,
        max_age=settings.access_token_expire_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        pair.refresh_token,
        max_age=settings.refresh_token_expire_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _clear_auth_cookies(response: JSONResponse, settings: Settings) -> None:
    for name in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(
            name,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
        )


async def _stage_uploads(
    media: MediaService, *uploads: Optional[UploadFile]
) -> list[Optional[Path]]:
    """Copy multipart files to local temp paths (None for absent parts).

    If any copy fails, the ones already written are removed.
    """
    paths: list[Optional[Path]] = []
    try:
        for upload in uploads:
            if upload is None or not upload.filename:
                paths.append(None)
            else:
                paths.append(await media.save_temp_upload(upload))
    except OSError as e:
        for path in paths:
            media.discard(path)
        logger.error("temp_upload_failed", error=str(e))
        raise UploadError("Could not receive uploaded file") from e
    return paths


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    full_name: str = Form(""),
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Register a new account (multipart form with avatar and optional cover image).

    Raises:
        ValidationError 400: Blank field or missing avatar
        ConflictError 409: Username or email taken
        UploadError 400: Avatar could not be stored
    """
    avatar_path, cover_path = await _stage_uploads(sessions.media, avatar, cover_image)

    user = await sessions.register(
        full_name=full_name,
        username=username,
        email=email,
        password=password,
        avatar_path=avatar_path,
        cover_image_path=cover_path,
    )
    return _respond(status.HTTP_201_CREATED, user, "User registered successfully")


@router.post("/login")
async def login(
    request: LoginRequest,
    sessions: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Login with username or email and password; sets both token cookies."""
    result = await sessions.login(
        password=request.password,
        username=request.username,
        email=request.email,
    )
    response = _respond(status.HTTP_200_OK, result, "User logged in successfully")
    _set_auth_cookies(response, result, settings)
    return response


@router.post("/logout")
async def logout(
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Revoke the stored refresh token and clear both cookies."""
    await sessions.logout(current_user.id)
    response = _respond(status.HTTP_200_OK, {}, "User logged out successfully")
    _clear_auth_cookies(response, settings)
    return response


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    body: Optional[RefreshRequest] = None,
    sessions: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Rotate the refresh token (from cookie, else body) and re-set both cookies."""
    presented = request.cookies.get(REFRESH_TOKEN_COOKIE) or (
        body.refresh_token if body else None
    )
    pair = await sessions.refresh_access_token(presented)
    response = _respond(status.HTTP_200_OK, pair, "Access token refreshed")
    _set_auth_cookies(response, pair, settings)
    return response


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Change the current user's password."""
    await sessions.change_password(
        current_user.id, request.old_password, request.new_password
    )
    return _respond(status.HTTP_200_OK, {}, "Password changed successfully")


@router.get("/me")
async def get_me(
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Get the current authenticated user."""
    user = await sessions.get_current_user(current_user.id)
    return _respond(status.HTTP_200_OK, user, "Current user fetched successfully")


@router.patch("/update-account")
async def update_account(
    request: UpdateAccountRequest,
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Update full name and/or email."""
    user = await sessions.update_profile(
        current_user.id, full_name=request.full_name, email=request.email
    )
    return _respond(status.HTTP_200_OK, user, "Account details updated successfully")


@router.patch("/avatar")
async def update_avatar(
    avatar: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Replace the current user's avatar."""
    (avatar_path,) = await _stage_uploads(sessions.media, avatar)
    user = await sessions.update_avatar(current_user.id, avatar_path)
    return _respond(status.HTTP_200_OK, user, "Avatar updated successfully")


@router.patch("/cover-image")
async def update_cover_image(
    cover_image: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Replace the current user's cover image."""
    (cover_path,) = await _stage_uploads(sessions.media, cover_image)
    user = await sessions.update_cover_image(current_user.id, cover_path)
    return _respond(status.HTTP_200_OK, user, "Cover image updated successfully")


@router.get("/history")
async def watch_history(
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Get the current user's watch history (ordered video ids)."""
    history = await sessions.get_watch_history(current_user.id)
    return _respond(status.HTTP_200_OK, history, "Watch history fetched successfully")


@router.post("/history/{video_id}")
async def record_watch(
    video_id: UUID,
    current_user: User = Depends(get_current_user),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Record a watched video at the end of the history."""
    history = await sessions.record_watch(current_user.id, video_id)
    return _respond(status.HTTP_200_OK, history, "Watch history updated")
