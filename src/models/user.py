"""User models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class User(BaseModel):
    """A registered account, sanitized for responses.

    Never carries the password hash or the stored refresh token; those
    columns are only read by the record store for credential checks.
    """

    id: UUID
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str = ""
    watch_history: list[UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
