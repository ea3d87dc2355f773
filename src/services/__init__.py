"""Services package exports."""

from src.services.auth_service import AuthService
from src.services.logging_service import configure_logging, get_logger
from src.services.media_service import MediaService
from src.services.session_service import SessionService
from src.services.user_service import UserService

__all__ = [
    "AuthService",
    "MediaService",
    "SessionService",
    "UserService",
    "configure_logging",
    "get_logger",
]
