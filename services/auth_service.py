import secrets
from sqlalchemy import func
from sqlalchemy.orm import Session
from models.users import User
from utils.hashing import verify_password, get_password_hash
from core.exceptions import AuthError, ForbiddenError, ConflictError
from utils.logger import get_logger

logger = get_logger(__name__)

class AuthService:

    @staticmethod
    def authenticate_user(username: str, password: str, db: Session) -> User:
        user = db.query(User).filter(User.username == username).first()

        if not user:
            logger.warning(
                "Login failed - user not found",
                extra={"username": username}
            )
            raise AuthError("Invalid credentials", code="INVALID_CREDENTIALS")

        if not verify_password(password, user.password_hash):
            logger.warning(
                "Login failed - invalid password",
                extra={"user_id": user.id, "username": username}
            )
            raise AuthError("Invalid credentials", code="INVALID_CREDENTIALS")

        logger.debug(
            "User authenticated successfully",
            extra={"user_id": user.id, "username": username}
        )

        return user

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> User | None:
        return db.query(User).filter(User.id == user_id).one_or_none()

    @staticmethod
    def check_setup_token(provided: str | None, expected: str) -> None:
        """
        Validates the one-time setup secret in constant time.
        An unset secret never matches.
        """
        if not provided:
            raise AuthError("Setup token is required", code="NO_SETUP_TOKEN")

        if not expected or not secrets.compare_digest(provided.encode(), expected.encode()):
            logger.warning("Setup attempt with invalid token")
            raise ForbiddenError("Invalid setup token", code="INVALID_SETUP_TOKEN")

    @staticmethod
    def create_initial_admin(username: str, password: str, db: Session) -> User:
        """
        Creates the first user. Refuses once any user exists; further users
        are managed out of band.
        """
        existing = db.query(func.count(User.id)).scalar()
        if existing:
            raise ConflictError(
                "Admin user already exists. Use the proper admin management flow to create additional users.",
                code="ADMIN_ALREADY_EXISTS"
            )

        model = User(
            username=username,
            password_hash=get_password_hash(password)
        )

        db.add(model)
        db.commit()
        db.refresh(model)

        logger.info(
            "Initial admin user created",
            extra={"user_id": model.id, "username": model.username}
        )
        return model
