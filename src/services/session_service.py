"""Account session orchestration: registration, login, token rotation.

There is no persisted session object. Each call rebuilds what it needs from
the presented token and the user record, and the only server-side session
state is the single refresh token stored on the user row.
"""

import asyncio
import hmac
from pathlib import Path
from typing import Optional, Union
from uuid import UUID

import structlog

from src.errors import (
    AuthError,
    ConflictError,
    InternalError,
    InvalidTokenError,
    NotFoundError,
    UploadError,
    ValidationError,
)
from src.models.auth import (
    AccessTokenClaims,
    LoginResult,
    RefreshTokenClaims,
    TokenPair,
)
from src.models.user import User
from src.services.auth_service import AuthService
from src.services.media_service import MediaService
from src.services.user_service import UserService

logger = structlog.get_logger(__name__)

LocalPath = Optional[Union[str, Path]]

INVALID_CREDENTIALS = "Invalid user credentials"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
REFRESH_TOKEN_REUSED = "Refresh token is expired or used"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class SessionService:
    """Orchestrates account and token lifecycle operations."""

    def __init__(
        self,
        users: UserService,
        auth: AuthService,
        media: MediaService,
    ):
        self.users = users
        self.auth = auth
        self.media = media

    def _issue_pair(self, user: User) -> TokenPair:
        """Mint an access/refresh pair for a user (not persisted)."""
        access_token = self.auth.issue_access_token(
            AccessTokenClaims(
                sub=user.id,
                email=user.email,
                username=user.username,
                full_name=user.full_name,
            )
        )
        refresh_token = self.auth.issue_refresh_token(RefreshTokenClaims(sub=user.id))
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def register(
        self,
        full_name: str,
        username: str,
        email: str,
        password: str,
        avatar_path: LocalPath,
        cover_image_path: LocalPath = None,
    ) -> User:
        """Create an account with a mandatory avatar and optional cover image.

        Local upload files are removed on every exit path, including the
        validation failures that happen before any upload is attempted.

        Raises:
            ValidationError: Blank field or missing avatar
            ConflictError: Username or email already registered
            UploadError: Media store returned no avatar URL
            InternalError: Created record could not be read back
        """
        try:
            if any(_is_blank(v) for v in (full_name, username, email, password)):
                raise ValidationError("All fields are required")

            username = username.strip().lower()
            email = email.strip().lower()

            # One query for both fields; the unique constraints catch the
            # narrow race between this check and the insert below.
            if await self.users.find_by_username_or_email(username, email) is not None:
                raise ConflictError("User already exists with this username or email")

            if not avatar_path:
                raise ValidationError("Avatar file is required")

            password_hash = await asyncio.to_thread(self.auth.hash_password, password)

            avatar_url = await self.media.upload(avatar_path)
            if not avatar_url:
                raise UploadError("Avatar file upload failed")

            cover_url = await self.media.upload(cover_image_path) if cover_image_path else None
            if cover_image_path and not cover_url:
                logger.warning("cover_image_upload_failed", username=username)

            created = await self.users.create_user(
                username=username,
                email=email,
                full_name=full_name.strip(),
                password_hash=password_hash,
                avatar=avatar_url,
                cover_image=cover_url or "",
            )

            user = await self.users.get_by_id(created.id)
            if user is None:
                logger.error("registered_user_missing", user_id=str(created.id))
                raise InternalError("Something went wrong while registering the user")
        finally:
            self.media.discard(avatar_path)
            self.media.discard(cover_image_path)

        logger.info("user_registered", user_id=str(user.id), username=user.username)
        return user

    async def login(
        self,
        password: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> LoginResult:
        """Verify credentials and start a new session.

        Any previously stored refresh token is overwritten, so only the
        newest login's refresh token stays usable.

        Raises:
            ValidationError: Neither username nor email supplied
            NotFoundError: No matching account
            AuthError: Wrong password
        """
        if _is_blank(username) and _is_blank(email):
            raise ValidationError("Username or email is required")

        found = await self.users.find_by_username_or_email(username, email)
        if found is None:
            raise NotFoundError("User does not exist")

        user, password_hash = found
        valid = await asyncio.to_thread(self.auth.verify_password, password or "", password_hash)
        if not valid:
            logger.info("login_failed", user_id=str(user.id))
            raise AuthError(INVALID_CREDENTIALS)

        pair = self._issue_pair(user)
        if not await self.users.set_refresh_token(user.id, pair.refresh_token):
            raise InternalError(
                "Something went wrong while generating access and refresh token"
            )

        logger.info("user_logged_in", user_id=str(user.id), username=user.username)
        return LoginResult(
            user=user,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    async def logout(self, user_id: UUID) -> None:
        """End the user's session by revoking the stored refresh token."""
        await self.users.clear_refresh_token(user_id)
        logger.info("user_logged_out", user_id=str(user_id))

    async def refresh_access_token(self, presented_token: Optional[str]) -> TokenPair:
        """Exchange a refresh token for a new pair, rotating the stored token.

        A token that verifies but no longer matches the stored value was
        already rotated out or revoked, and is rejected.

        Raises:
            AuthError: Missing, invalid, expired, revoked or reused token
        """
        if _is_blank(presented_token):
            raise AuthError("Unauthorized request")

        try:
            claims = self.auth.verify_refresh_token(presented_token)
        except InvalidTokenError as e:
            logger.info("refresh_token_rejected", expired=e.expired)
            raise AuthError(INVALID_REFRESH_TOKEN) from e

        user = await self.users.get_by_id(claims.sub)
        if user is None:
            logger.warning("refresh_token_user_missing", user_id=str(claims.sub))
            raise AuthError(INVALID_REFRESH_TOKEN)

        stored = await self.users.get_refresh_token(user.id)
        if stored is None or not hmac.compare_digest(stored, presented_token):
            logger.warning("refresh_token_reuse_detected", user_id=str(user.id))
            raise AuthError(REFRESH_TOKEN_REUSED)

        pair = self._issue_pair(user)
        if not await self.users.rotate_refresh_token(user.id, presented_token, pair.refresh_token):
            # Lost a race with a concurrent rotation of the same token
            logger.warning("refresh_token_rotation_lost", user_id=str(user.id))
            raise AuthError(REFRESH_TOKEN_REUSED)

        logger.info("access_token_refreshed", user_id=str(user.id))
        return pair

    async def change_password(
        self, user_id: UUID, old_password: str, new_password: str
    ) -> None:
        """Replace the password after verifying the old one.

        Also revokes the stored refresh token, so other sessions must log in
        again once their access token expires.

        Raises:
            ValidationError: Blank new password
            NotFoundError: User vanished
            AuthError: Old password does not verify
        """
        if _is_blank(new_password):
            raise ValidationError("New password is required")

        password_hash = await self.users.get_password_hash(user_id)
        if password_hash is None:
            raise NotFoundError()

        valid = await asyncio.to_thread(
            self.auth.verify_password, old_password or "", password_hash
        )
        if not valid:
            logger.info("password_change_rejected", user_id=str(user_id))
            raise AuthError("Invalid old password")

        new_hash = await asyncio.to_thread(self.auth.hash_password, new_password)
        await self.users.update_password_hash(user_id, new_hash, revoke_sessions=True)
        logger.info("password_changed", user_id=str(user_id))

    async def get_current_user(self, user_id: UUID) -> User:
        """Return the sanitized user, or raise NotFoundError."""
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError()
        return user

    async def update_profile(
        self,
        user_id: UUID,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        """Update full name and/or email; at least one must be non-blank."""
        full_name = None if _is_blank(full_name) else full_name.strip()
        email = None if _is_blank(email) else email.strip().lower()
        if full_name is None and email is None:
            raise ValidationError("Full name or email is required")

        user = await self.users.update_user(user_id, full_name=full_name, email=email)
        if user is None:
            raise NotFoundError()
        return user

    async def _replace_image(self, user_id: UUID, local_path: LocalPath, field: str) -> User:
        label = field.replace("_", " ")
        if not local_path:
            raise ValidationError(f"{label.capitalize()} file is missing")

        url = await self.media.upload(local_path)
        if not url:
            raise UploadError(f"Error while uploading {label}")

        user = await self.users.update_user(user_id, **{field: url})
        if user is None:
            raise NotFoundError()

        logger.info("user_image_updated", user_id=str(user_id), field=field)
        return user

    async def update_avatar(self, user_id: UUID, avatar_path: LocalPath) -> User:
        """Upload a new avatar and store its URL.

        Raises:
            ValidationError: No file supplied
            UploadError: Media store returned no URL
        """
        return await self._replace_image(user_id, avatar_path, "avatar")

    async def update_cover_image(self, user_id: UUID, cover_image_path: LocalPath) -> User:
        """Upload a new cover image and store its URL.

        Raises:
            ValidationError: No file supplied
            UploadError: Media store returned no URL
        """
        return await self._replace_image(user_id, cover_image_path, "cover_image")

    async def get_watch_history(self, user_id: UUID) -> list[UUID]:
        """Return the ordered list of watched video ids."""
        history = await self.users.get_watch_history(user_id)
        if history is None:
            raise NotFoundError()
        return history

    async def record_watch(self, user_id: UUID, video_id: UUID) -> list[UUID]:
        """Append a video to the watch history and return the new history."""
        if not await self.users.add_to_watch_history(user_id, video_id):
            raise NotFoundError()
        return await self.get_watch_history(user_id)
