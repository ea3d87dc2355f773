"""Unit tests for SessionService.

Runs the account lifecycle against the in-memory record store and a fake
media store, with real bcrypt hashing and real JWTs.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from src.errors import (
    AuthError,
    ConflictError,
    InternalError,
    NotFoundError,
    UploadError,
    ValidationError,
)
from src.models.auth import RefreshTokenClaims


async def _register(session_service, temp_image, **overrides):
    values = {
        "full_name": "Alice Liddell",
        "username": "alice",
        "email": "alice@x.com",
        "password": "correct-password",
        "avatar_path": temp_image("a.png"),
    }
    values.update(overrides)
    return await session_service.register(**values)


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------

class TestRegister:
    """Tests for SessionService.register."""

    async def test_register_stores_hash_not_plaintext(
        self, session_service, user_store, auth_service, temp_image
    ):
        user = await _register(session_service, temp_image)

        record = user_store.records[user.id]
        assert record["password_hash"] != "correct-password"
        assert auth_service.verify_password("correct-password", record["password_hash"])

    async def test_register_returns_sanitized_user(self, session_service, temp_image):
        user = await _register(session_service, temp_image)

        dumped = user.model_dump()
        assert "password_hash" not in dumped
        assert "refresh_token" not in dumped
        assert user.username == "alice"
        assert user.avatar == "https://media.test/a.png"
        assert user.cover_image == ""

    async def test_register_normalises_identifiers(self, session_service, temp_image):
        user = await _register(
            session_service, temp_image, username="  ALICE ", email="Alice@X.com"
        )
        assert user.username == "alice"
        assert user.email == "alice@x.com"

    async def test_register_with_cover_image(self, session_service, temp_image):
        user = await _register(
            session_service, temp_image, cover_image_path=temp_image("c.png")
        )
        assert user.cover_image == "https://media.test/c.png"

    @pytest.mark.parametrize("field", ["full_name", "username", "email", "password"])
    async def test_blank_field_rejected(self, session_service, user_store, temp_image, field):
        with pytest.raises(ValidationError, match="All fields are required"):
            await _register(session_service, temp_image, **{field: "   "})
        assert user_store.records == {}

    async def test_missing_avatar_rejected_and_nothing_created(
        self, session_service, user_store, temp_image
    ):
        with pytest.raises(ValidationError, match="Avatar"):
            await _register(session_service, temp_image, avatar_path=None)
        assert user_store.records == {}

    async def test_avatar_upload_failure(self, session_service, media_service, user_store, temp_image):
        media_service.fail = True
        avatar = temp_image("a.png")

        with pytest.raises(UploadError):
            await _register(session_service, temp_image, avatar_path=avatar)

        assert user_store.records == {}
        assert not avatar.exists()

    async def test_cover_upload_failure_tolerated(self, session_service, media_service, temp_image):
        original_upload = media_service.upload

        async def fail_cover(path):
            if path and Path(path).name.startswith("cover"):
                media_service.discard(path)
                return None
            return await original_upload(path)

        media_service.upload = fail_cover
        user = await _register(
            session_service, temp_image, cover_image_path=temp_image("cover.png")
        )
        assert user.cover_image == ""

    async def test_duplicate_username_conflicts(self, session_service, temp_image):
        await _register(session_service, temp_image)
        with pytest.raises(ConflictError):
            await _register(
                session_service, temp_image, email="other@x.com", avatar_path=temp_image("b.png")
            )

    async def test_duplicate_email_conflicts(self, session_service, temp_image):
        await _register(session_service, temp_image)
        with pytest.raises(ConflictError):
            await _register(
                session_service, temp_image, username="alice2", avatar_path=temp_image("b.png")
            )

    async def test_conflict_removes_temp_files(self, session_service, temp_image):
        await _register(session_service, temp_image)
        avatar = temp_image("second.png")
        cover = temp_image("second-cover.png")

        with pytest.raises(ConflictError):
            await _register(
                session_service, temp_image, avatar_path=avatar, cover_image_path=cover
            )

        assert not avatar.exists()
        assert not cover.exists()

    async def test_concurrent_registrations_exactly_one_succeeds(
        self, session_service, user_store, temp_image
    ):
        attempts = [
            _register(
                session_service,
                temp_image,
                email=f"alice{i}@x.com",
                avatar_path=temp_image(f"a{i}.png"),
            )
            for i in range(5)
        ]

        results = await asyncio.gather(*attempts, return_exceptions=True)

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, ConflictError) for f in failures)
        assert len(user_store.records) == 1

    async def test_read_back_missing_is_internal_error(self, session_service, user_store, temp_image):
        user_store.vanish_after_create = True
        with pytest.raises(InternalError):
            await _register(session_service, temp_image)


# ---------------------------------------------------------------------------
# login / logout
# ---------------------------------------------------------------------------

class TestLogin:
    """Tests for SessionService.login and logout."""

    async def test_login_by_username_persists_refresh_token(
        self, session_service, user_store, temp_image
    ):
        registered = await _register(session_service, temp_image)

        result = await session_service.login(password="correct-password", username="alice")

        assert result.user.id == registered.id
        assert result.access_token
        assert user_store.records[registered.id]["refresh_token"] == result.refresh_token
        assert "password_hash" not in result.user.model_dump()

    async def test_login_by_email_case_insensitive(self, session_service, temp_image):
        await _register(session_service, temp_image)
        result = await session_service.login(password="correct-password", email="ALICE@x.com")
        assert result.user.username == "alice"

    async def test_login_requires_identifier(self, session_service):
        with pytest.raises(ValidationError):
            await session_service.login(password="whatever")

    async def test_login_unknown_user(self, session_service):
        with pytest.raises(NotFoundError):
            await session_service.login(password="whatever", username="ghost")

    async def test_login_wrong_password(self, session_service, user_store, temp_image):
        registered = await _register(session_service, temp_image)

        with pytest.raises(AuthError) as exc_info:
            await session_service.login(password="wrong-password", username="alice")

        assert exc_info.value.message == "Invalid user credentials"
        assert user_store.records[registered.id]["refresh_token"] is None

    async def test_second_login_overwrites_refresh_token(self, session_service, temp_image):
        await _register(session_service, temp_image)
        first = await session_service.login(password="correct-password", username="alice")
        second = await session_service.login(password="correct-password", username="alice")

        assert first.refresh_token != second.refresh_token
        with pytest.raises(AuthError):
            await session_service.refresh_access_token(first.refresh_token)

    async def test_logout_clears_and_is_idempotent(self, session_service, user_store, temp_image):
        user = await _register(session_service, temp_image)
        result = await session_service.login(password="correct-password", username="alice")

        await session_service.logout(user.id)
        await session_service.logout(user.id)

        assert user_store.records[user.id]["refresh_token"] is None
        with pytest.raises(AuthError):
            await session_service.refresh_access_token(result.refresh_token)


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------

class TestRefresh:
    """Tests for SessionService.refresh_access_token."""

    async def test_rotation_invalidates_old_token(self, session_service, user_store, temp_image):
        user = await _register(session_service, temp_image)
        login = await session_service.login(password="correct-password", username="alice")

        pair = await session_service.refresh_access_token(login.refresh_token)

        assert pair.refresh_token != login.refresh_token
        assert user_store.records[user.id]["refresh_token"] == pair.refresh_token

        with pytest.raises(AuthError):
            await session_service.refresh_access_token(login.refresh_token)

        # The rotated-in token still works after the reuse attempt
        again = await session_service.refresh_access_token(pair.refresh_token)
        assert again.refresh_token != pair.refresh_token

    @pytest.mark.parametrize("token", [None, "", "   "])
    async def test_missing_token(self, session_service, token):
        with pytest.raises(AuthError, match="Unauthorized"):
            await session_service.refresh_access_token(token)

    async def test_garbage_token(self, session_service):
        with pytest.raises(AuthError, match="Invalid refresh token"):
            await session_service.refresh_access_token("garbage")

    async def test_access_token_cannot_refresh(self, session_service, temp_image):
        await _register(session_service, temp_image)
        login = await session_service.login(password="correct-password", username="alice")

        with pytest.raises(AuthError):
            await session_service.refresh_access_token(login.access_token)

    async def test_unknown_subject(self, session_service, auth_service):
        token = auth_service.issue_refresh_token(RefreshTokenClaims(sub=uuid4()))
        with pytest.raises(AuthError):
            await session_service.refresh_access_token(token)

    async def test_valid_but_never_stored_token(self, session_service, auth_service, temp_image):
        user = await _register(session_service, temp_image)
        await session_service.login(password="correct-password", username="alice")
        forged_but_signed = auth_service.issue_refresh_token(RefreshTokenClaims(sub=user.id))

        with pytest.raises(AuthError, match="expired or used"):
            await session_service.refresh_access_token(forged_but_signed)

    async def test_lost_rotation_race(self, session_service, user_store, temp_image):
        await _register(session_service, temp_image)
        login = await session_service.login(password="correct-password", username="alice")
        user_store.rotate_refresh_token = AsyncMock(return_value=False)

        with pytest.raises(AuthError):
            await session_service.refresh_access_token(login.refresh_token)


# ---------------------------------------------------------------------------
# change_password
# ---------------------------------------------------------------------------

class TestChangePassword:
    """Tests for SessionService.change_password."""

    async def test_change_password_and_login_with_new(self, session_service, temp_image):
        user = await _register(session_service, temp_image)

        await session_service.change_password(user.id, "correct-password", "brand-new-password")

        with pytest.raises(AuthError):
            await session_service.login(password="correct-password", username="alice")
        result = await session_service.login(password="brand-new-password", username="alice")
        assert result.user.id == user.id

    async def test_change_password_revokes_refresh_token(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        login = await session_service.login(password="correct-password", username="alice")

        await session_service.change_password(user.id, "correct-password", "brand-new-password")

        with pytest.raises(AuthError):
            await session_service.refresh_access_token(login.refresh_token)

    async def test_wrong_old_password(self, session_service, user_store, temp_image):
        user = await _register(session_service, temp_image)
        old_hash = user_store.records[user.id]["password_hash"]

        with pytest.raises(AuthError, match="old password"):
            await session_service.change_password(user.id, "nope", "brand-new-password")
        assert user_store.records[user.id]["password_hash"] == old_hash

    async def test_blank_new_password(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        with pytest.raises(ValidationError):
            await session_service.change_password(user.id, "correct-password", "  ")

    async def test_unknown_user(self, session_service):
        with pytest.raises(NotFoundError):
            await session_service.change_password(uuid4(), "a", "brand-new-password")


# ---------------------------------------------------------------------------
# profile
# ---------------------------------------------------------------------------

class TestProfile:
    """Tests for current user, profile and image updates, watch history."""

    async def test_get_current_user(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        assert (await session_service.get_current_user(user.id)).id == user.id

    async def test_get_current_user_missing(self, session_service):
        with pytest.raises(NotFoundError):
            await session_service.get_current_user(uuid4())

    async def test_update_profile(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        updated = await session_service.update_profile(
            user.id, full_name=" Alice L. ", email="NEW@x.com"
        )
        assert updated.full_name == "Alice L."
        assert updated.email == "new@x.com"

    async def test_update_profile_requires_a_field(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        with pytest.raises(ValidationError):
            await session_service.update_profile(user.id, full_name=" ", email=None)

    async def test_update_profile_email_conflict(self, session_service, temp_image):
        await _register(session_service, temp_image)
        other = await _register(
            session_service,
            temp_image,
            username="bob",
            email="bob@x.com",
            avatar_path=temp_image("b.png"),
        )
        with pytest.raises(ConflictError):
            await session_service.update_profile(other.id, email="alice@x.com")

    async def test_update_avatar(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        new_avatar = temp_image("new-avatar.png")

        updated = await session_service.update_avatar(user.id, new_avatar)

        assert updated.avatar == "https://media.test/new-avatar.png"
        assert not new_avatar.exists()

    async def test_update_avatar_missing_file(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        with pytest.raises(ValidationError):
            await session_service.update_avatar(user.id, None)

    async def test_update_cover_upload_failure(self, session_service, media_service, temp_image):
        user = await _register(session_service, temp_image)
        media_service.fail = True

        with pytest.raises(UploadError):
            await session_service.update_cover_image(user.id, temp_image("cover.png"))

    async def test_watch_history(self, session_service, temp_image):
        user = await _register(session_service, temp_image)
        first, second = uuid4(), uuid4()

        await session_service.record_watch(user.id, first)
        await session_service.record_watch(user.id, second)
        history = await session_service.record_watch(user.id, first)

        assert history == [second, first]
        assert await session_service.get_watch_history(user.id) == [second, first]

    async def test_watch_history_unknown_user(self, session_service):
        with pytest.raises(NotFoundError):
            await session_service.get_watch_history(uuid4())
