"""Application error taxonomy.

Every error raised by the service layer carries the HTTP status it maps to.
The transport boundary (``src.api.error_handlers``) turns them into the
uniform error envelope; only ``message`` and ``errors`` reach the client.
"""

from typing import Optional


class AppError(Exception):
    """Base class for errors that map onto an HTTP error response."""

    status_code: int = 500
    default_message: str = "Something went wrong"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        errors: Optional[list] = None,
    ) -> None:
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed or missing input (400)."""

    status_code = 400
    default_message = "Invalid request"


class ConflictError(AppError):
    """Uniqueness violation (409)."""

    status_code = 409
    default_message = "User already exists with this username or email"


class NotFoundError(AppError):
    """Requested record does not exist (404)."""

    status_code = 404
    default_message = "User does not exist"


class AuthError(AppError):
    """Bad credential or token (401)."""

    status_code = 401
    default_message = "Unauthorized request"


class UploadError(AppError):
    """Media store failed to return a durable URL (400)."""

    status_code = 400
    default_message = "File upload failed"


class InternalError(AppError):
    """Invariant violation or unexpected store failure (500)."""

    status_code = 500
    default_message = "Something went wrong"


class InvalidTokenError(Exception):
    """A JWT failed signature, payload or expiry checks.

    Never surfaced to clients directly; callers translate it into
    ``AuthError``. ``expired`` is kept for logging only.
    """

    def __init__(self, reason: str, *, expired: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.expired = expired
