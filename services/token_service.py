import secrets
import hashlib
from datetime import datetime, timezone, timedelta
from sqlalchemy.orm import Session
from jose import jwt, JWTError, ExpiredSignatureError
from models.refresh_tokens import RefreshToken
from models.users import User
from core.config import settings
from core.exceptions import TokenExpiredError, InvalidTokenError
from utils.logger import get_logger

logger = get_logger(__name__)

REFRESH_TOKEN_BYTES = 64


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TokenService:
    """
    Handles all token operations: creation, validation, rotation, and revocation.

    Access tokens are stateless JWTs. Refresh tokens are opaque random
    strings; only their SHA-256 digest is persisted.
    """

    @staticmethod
    def generate_access_token(user: User, expires_delta: timedelta = None) -> str:
        """
        Creates a signed access token carrying ``id`` and ``username``.

        Args:
            user: The authenticated user
            expires_delta: Token lifetime (default: ACCESS_TOKEN_EXPIRE_MINUTES)

        Returns:
            JWT access token string
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        now = datetime.now(timezone.utc)

        payload = {
            "id": user.id,
            "username": user.username,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_delta).timestamp())
        }

        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def decode_access_token(token: str) -> dict:
        """
        Verifies an access token and returns its payload.

        Raises:
            TokenExpiredError: The signature is valid but ``exp`` has passed
            InvalidTokenError: Anything else (bad signature, malformed, missing claims)
        """
        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError:
            raise InvalidTokenError()

        if payload.get("id") is None or payload.get("username") is None:
            raise InvalidTokenError()

        return payload

    @staticmethod
    def generate_refresh_token() -> str:
        """64 random bytes, hex encoded. The caller sees it once."""
        return secrets.token_hex(REFRESH_TOKEN_BYTES)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    @staticmethod
    def store_refresh_token(db: Session, user_id: int, token: str) -> RefreshToken:
        expires_at = datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

        db_token = RefreshToken(
            user_id=user_id,
            token_hash=TokenService.hash_token(token),
            expires_at=expires_at
        )
        db.add(db_token)
        db.commit()

        return db_token

    @staticmethod
    def generate_token_pair(db: Session, user: User) -> tuple[str, str]:
        """
        Creates access token + refresh token pair.
        Stores the refresh token digest in the database.

        Returns:
            Tuple of (access_token, refresh_token)
        """
        access_token = TokenService.generate_access_token(user)
        refresh_token = TokenService.generate_refresh_token()

        TokenService.store_refresh_token(db, user.id, refresh_token)

        return access_token, refresh_token

    @staticmethod
    def validate_refresh_token(db: Session, token: str) -> int | None:
        """
        Looks up a refresh token by digest.

        Returns:
            The owning user id, or None when the token is unknown, revoked or expired
        """
        db_token = db.query(RefreshToken).filter(
            RefreshToken.token_hash == TokenService.hash_token(token)
        ).first()

        if not db_token:
            return None

        if db_token.revoked_at is not None:
            logger.warning(
                "Revoked refresh token presented",
                extra={"user_id": db_token.user_id}
            )
            return None

        if _as_utc(db_token.expires_at) < datetime.now(timezone.utc):
            return None

        return db_token.user_id

    @staticmethod
    def revoke_refresh_token(db: Session, token: str) -> int:
        """
        Revokes a refresh token (logout, rotation). Unknown tokens are ignored.

        Returns:
            1 if this call revoked the token, 0 if it was unknown or already revoked
        """
        count = db.query(RefreshToken).filter(
            RefreshToken.token_hash == TokenService.hash_token(token),
            RefreshToken.revoked_at.is_(None)
        ).update({"revoked_at": datetime.now(timezone.utc)})
        db.commit()
        return count

    @staticmethod
    def revoke_all_user_tokens(db: Session, user_id: int) -> int:
        """
        Revokes all refresh tokens for a user (logout from all devices).

        Returns:
            Number of tokens revoked
        """
        count = db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None)
        ).update({"revoked_at": datetime.now(timezone.utc)})
        db.commit()

        logger.info(
            "Revoked all refresh tokens",
            extra={"user_id": user_id, "revoked": count}
        )
        return count

    @staticmethod
    def cleanup_expired_tokens(db: Session) -> int:
        """
        Deletes refresh token rows that are expired or revoked.
        Meant for a scheduled job.
        """
        count = db.query(RefreshToken).filter(
            (RefreshToken.expires_at < datetime.now(timezone.utc)) | (RefreshToken.revoked_at.is_not(None))
        ).delete(synchronize_session=False)
        db.commit()

        logger.info("Cleaned up refresh tokens", extra={"deleted": count})
        return count
