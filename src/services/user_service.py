"""User record store backed by PostgreSQL."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from src.database import get_pool
from src.errors import ConflictError
from src.models.user import User

logger = structlog.get_logger(__name__)

# Sanitized projection: never includes password_hash or refresh_token
USER_COLUMNS = (
    "id, username, email, full_name, avatar, cover_image, "
    "watch_history, created_at, updated_at"
)


def _row_to_user(row) -> User:
    """Build a sanitized User from a users row."""
    return User(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        full_name=row["full_name"],
        avatar=row["avatar"],
        cover_image=row["cover_image"] or "",
        watch_history=list(row["watch_history"] or []),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class UserService:
    """Persistence for user records.

    Username and email are stored lowercase. Their uniqueness is enforced by
    the table's unique constraints, which is what ultimately decides a race
    between two concurrent registrations.
    """

    async def create_user(
        self,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        avatar: str,
        cover_image: str = "",
    ) -> User:
        """Insert a new user row.

        Args:
            username: Unique username (normalised to lowercase)
            email: Unique email (normalised to lowercase)
            full_name: Display name
            password_hash: Bcrypt hash, never the plaintext
            avatar: Durable avatar URL
            cover_image: Durable cover image URL or empty string

        Returns:
            Created User model (sanitized)

        Raises:
            ConflictError: If the username or email is already taken
        """
        user_id = uuid4()
        now = datetime.now(timezone.utc)
        username = username.strip().lower()
        email = email.strip().lower()

        pool = await get_pool()

        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO users (id, username, email, full_name, password_hash,
                                       avatar, cover_image, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    user_id,
                    username,
                    email,
                    full_name,
                    password_hash,
                    avatar,
                    cover_image,
                    now,
                    now,
                )
        except asyncpg.exceptions.UniqueViolationError as e:
            logger.warning(
                "user_create_conflict",
                username=username,
                constraint=getattr(e, "constraint_name", None),
            )
            raise ConflictError() from e

        logger.info("user_created", user_id=str(user_id), username=username)

        return User(
            id=user_id,
            username=username,
            email=email,
            full_name=full_name,
            avatar=avatar,
            cover_image=cover_image,
            watch_history=[],
            created_at=now,
            updated_at=now,
        )

    async def find_by_username_or_email(
        self,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[tuple[User, str]]:
        """Look a user up by username or email in a single query.

        Args:
            username: Username to match (case-insensitive)
            email: Email to match (case-insensitive)

        Returns:
            Tuple of (User, password_hash) or None if nothing matches
        """
        username = (username or "").strip().lower() or None
        email = (email or "").strip().lower() or None
        if username is None and email is None:
            return None

        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {USER_COLUMNS}, password_hash
                FROM users
                WHERE username = $1 OR email = $2
                LIMIT 1
                """,
                username,
                email,
            )

        if row is None:
            return None

        return _row_to_user(row), row["password_hash"]

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        """Get a sanitized user by UUID.

        Args:
            user_id: User UUID

        Returns:
            User model or None if not found
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {USER_COLUMNS} FROM users WHERE id = $1",
                user_id,
            )

        if row is None:
            return None
        return _row_to_user(row)

    async def get_password_hash(self, user_id: UUID) -> Optional[str]:
        """Get the stored password hash for a user, or None if absent."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT password_hash FROM users WHERE id = $1",
                user_id,
            )

    async def get_refresh_token(self, user_id: UUID) -> Optional[str]:
        """Get the currently valid refresh token for a user, if any."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT refresh_token FROM users WHERE id = $1",
                user_id,
            )

    async def set_refresh_token(self, user_id: UUID, token: str) -> bool:
        """Store a refresh token, replacing any previous value.

        Returns:
            True if the user row exists and was updated
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE users
                SET refresh_token = $2, updated_at = $3
                WHERE id = $1
                """,
                user_id,
                token,
                datetime.now(timezone.utc),
            )

        return result == "UPDATE 1"

    async def rotate_refresh_token(
        self, user_id: UUID, expected: str, new_token: str
    ) -> bool:
        """Replace the stored refresh token only if it still equals ``expected``.

        Of two concurrent rotations presenting the same token, exactly one
        wins; the other sees ``False``.

        Returns:
            True if the swap happened
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE users
                SET refresh_token = $3, updated_at = $4
                WHERE id = $1 AND refresh_token = $2
                """,
                user_id,
                expected,
                new_token,
                datetime.now(timezone.utc),
            )

        return result == "UPDATE 1"

    async def clear_refresh_token(self, user_id: UUID) -> None:
        """Revoke the stored refresh token. Safe to call repeatedly."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE users
                SET refresh_token = NULL, updated_at = $2
                WHERE id = $1
                """,
                user_id,
                datetime.now(timezone.utc),
            )

        logger.info("refresh_token_cleared", user_id=str(user_id))

    async def update_password_hash(
        self, user_id: UUID, password_hash: str, revoke_sessions: bool = True
    ) -> bool:
        """Persist a new password hash.

        Args:
            user_id: UUID of the user
            password_hash: New bcrypt hash
            revoke_sessions: Also clear the stored refresh token in the same update

        Returns:
            True if the user row exists and was updated
        """
        query = (
            "UPDATE users SET password_hash = $2, refresh_token = NULL, updated_at = $3 WHERE id = $1"
            if revoke_sessions
            else "UPDATE users SET password_hash = $2, updated_at = $3 WHERE id = $1"
        )

        pool = await get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                query, user_id, password_hash, datetime.now(timezone.utc)
            )

        updated = result == "UPDATE 1"
        if updated:
            logger.info(
                "password_hash_updated",
                user_id=str(user_id),
                sessions_revoked=revoke_sessions,
            )
        return updated

    async def update_user(
        self,
        user_id: UUID,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        avatar: Optional[str] = None,
        cover_image: Optional[str] = None,
    ) -> Optional[User]:
        """Update profile fields that are not None.

        Args:
            user_id: UUID of the user to update
            full_name: New display name (if provided)
            email: New email (if provided, normalised to lowercase)
            avatar: New avatar URL (if provided)
            cover_image: New cover image URL (if provided)

        Returns:
            Updated User model, or None if user not found

        Raises:
            ConflictError: If the new email belongs to another user
        """
        # Build SET clause dynamically for non-None fields
        set_clauses = []
        params = []
        param_idx = 1

        for column, value in (
            ("full_name", full_name),
            ("email", email.strip().lower() if email is not None else None),
            ("avatar", avatar),
            ("cover_image", cover_image),
        ):
            if value is not None:
                set_clauses.append(f"{column} = ${param_idx}")
                params.append(value)
                param_idx += 1

        if not set_clauses:
            # Nothing to update; just return the current user
            return await self.get_by_id(user_id)

        # Always update updated_at
        set_clauses.append(f"updated_at = ${param_idx}")
        params.append(datetime.now(timezone.utc))
        param_idx += 1

        # Add user_id as the final parameter for the WHERE clause
        params.append(user_id)

        query = f"""
            UPDATE users
            SET {', '.join(set_clauses)}
            WHERE id = ${param_idx}
            RETURNING {USER_COLUMNS}
        """

        pool = await get_pool()

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(query, *params)
        except asyncpg.exceptions.UniqueViolationError as e:
            logger.warning("user_update_conflict", user_id=str(user_id))
            raise ConflictError("Email is already in use") from e

        if row is None:
            return None

        logger.info(
            "user_updated",
            user_id=str(user_id),
            fields_updated=[c.split(" = ")[0] for c in set_clauses if "updated_at" not in c],
        )

        return _row_to_user(row)

    async def get_watch_history(self, user_id: UUID) -> Optional[list[UUID]]:
        """Get the ordered watch history, or None if the user does not exist."""
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT watch_history FROM users WHERE id = $1",
                user_id,
            )

        if row is None:
            return None
        return list(row["watch_history"] or [])

    async def add_to_watch_history(self, user_id: UUID, video_id: UUID) -> bool:
        """Append a video to the history, moving it to the end if already present.

        Returns:
            True if the user row exists and was updated
        """
        pool = await get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE users
                SET watch_history = array_append(array_remove(watch_history, $2), $2),
                    updated_at = $3
                WHERE id = $1
                """,
                user_id,
                video_id,
                datetime.now(timezone.utc),
            )

        return result == "UPDATE 1"
