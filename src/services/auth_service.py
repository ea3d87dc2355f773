"""Authentication service for password hashing and JWT tokens."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
import jwt
import structlog

from src.config import Settings
from src.errors import InternalError, InvalidTokenError, ValidationError
from src.models.auth import AccessTokenClaims, RefreshTokenClaims, TokenKind

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
MAX_PASSWORD_BYTES = 72  # bcrypt input limit


class AuthService:
    """Credential hashing plus issuance and verification of token pairs.

    Access and refresh tokens are signed with independent secrets so that
    leaking one cannot be used to forge the other.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string (fresh salt per call)

        Raises:
            ValidationError: If the password exceeds bcrypt's input limit
        """
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
            )
        salt = bcrypt.gensalt(rounds=self.settings.bcrypt_rounds)
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise

        Raises:
            InternalError: If the stored hash is malformed
        """
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError as e:
            logger.error("password_hash_malformed", error=str(e))
            raise InternalError("Stored credentials are corrupt") from e

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _secret_for(self, kind: TokenKind) -> str:
        if kind is TokenKind.ACCESS:
            return self.settings.access_token_secret
        return self.settings.refresh_token_secret

    def _lifetime_for(self, kind: TokenKind) -> timedelta:
        if kind is TokenKind.ACCESS:
            return timedelta(minutes=self.settings.access_token_expire_minutes)
        return timedelta(days=self.settings.refresh_token_expire_days)

    def _issue(self, claims: dict, kind: TokenKind) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "type": kind.value,
            "iat": now,
            "exp": now + self._lifetime_for(kind),
            # Unique per token, so two tokens minted in the same second differ
            "jti": uuid4().hex,
        }
        return jwt.encode(payload, self._secret_for(kind), algorithm=JWT_ALGORITHM)

    def issue_access_token(self, claims: AccessTokenClaims) -> str:
        """Create a signed access token carrying the user's identity claims.

        Args:
            claims: Subject id plus email, username and full name

        Returns:
            Encoded JWT string
        """
        token = self._issue(claims.model_dump(mode="json"), TokenKind.ACCESS)
        logger.debug(
            "access_token_issued",
            user_id=str(claims.sub),
            expires_minutes=self.settings.access_token_expire_minutes,
        )
        return token

    def issue_refresh_token(self, claims: RefreshTokenClaims) -> str:
        """Create a signed refresh token for the subject.

        Args:
            claims: Subject id

        Returns:
            Encoded JWT string
        """
        token = self._issue(claims.model_dump(mode="json"), TokenKind.REFRESH)
        logger.debug(
            "refresh_token_issued",
            user_id=str(claims.sub),
            expires_days=self.settings.refresh_token_expire_days,
        )
        return token

    def verify_token(self, token: str, kind: TokenKind) -> dict:
        """Decode and validate a JWT of the given kind.

        Args:
            token: Encoded JWT string
            kind: Which secret the token must have been signed with

        Returns:
            Decoded payload dict

        Raises:
            InvalidTokenError: If the token is expired, forged, malformed,
                or was issued as the other kind
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_for(kind),
                algorithms=[JWT_ALGORITHM],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("token_expired", kind=kind.value)
            raise InvalidTokenError(f"{kind.value} token has expired", expired=True)
        except jwt.InvalidTokenError as e:
            logger.warning("token_invalid", kind=kind.value, reason=str(e))
            raise InvalidTokenError(f"Invalid {kind.value} token: {e}")

        if payload.get("type") != kind.value:
            logger.warning("token_kind_mismatch", expected=kind.value)
            raise InvalidTokenError(f"Invalid {kind.value} token: wrong token type")

        return payload

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        """Verify an access token and return its identity claims."""
        payload = self.verify_token(token, TokenKind.ACCESS)
        try:
            return AccessTokenClaims.model_validate(payload)
        except ValueError as e:
            raise InvalidTokenError(f"Malformed access token payload: {e}")

    def verify_refresh_token(self, token: str) -> RefreshTokenClaims:
        """Verify a refresh token and return its claims."""
        payload = self.verify_token(token, TokenKind.REFRESH)
        try:
            return RefreshTokenClaims.model_validate(payload)
        except ValueError as e:
            raise InvalidTokenError(f"Malformed refresh token payload: {e}")
