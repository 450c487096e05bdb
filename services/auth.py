"""Accounts: password hashing, bearer tokens and profile updates."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from uuid import UUID
from passlib.context import CryptContext
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from sqlalchemy import func, or_

from config import get_settings
from models.users import User
from schemas.auth import Token, TokenPayload, UserCreate, UserUpdate

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_TTL = timedelta(minutes=30)
REFRESH_TOKEN_TTL = timedelta(days=7)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


class AuthService:
    """Account operations used by the auth endpoints and the bearer dependency."""

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its argon2 hash."""
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password for storage."""
        return pwd_context.hash(password)

    # Tokens

    @staticmethod
    def _encode(subject: Union[str, UUID], token_type: str, ttl: timedelta) -> str:
        issued = datetime.now(timezone.utc)
        claims = {"sub": str(subject), "iat": issued, "exp": issued + ttl, "type": token_type}
        return jwt.encode(claims, get_settings().secret_key, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(subject: Union[str, UUID], ttl: Optional[timedelta] = None) -> str:
        return AuthService._encode(subject, "access", ttl or ACCESS_TOKEN_TTL)

    @staticmethod
    def create_refresh_token(subject: Union[str, UUID]) -> str:
        return AuthService._encode(subject, "refresh", REFRESH_TOKEN_TTL)

    @staticmethod
    def issue_tokens(user: User) -> Token:
        """Fresh access/refresh pair for a signed-in user."""
        return Token(
            access_token=AuthService.create_access_token(user.id),
            refresh_token=AuthService.create_refresh_token(user.id),
        )

    @staticmethod
    def decode_token(token: str) -> Optional[TokenPayload]:
        """Claims of a valid, unexpired token; None otherwise."""
        try:
            return TokenPayload(**jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM]))
        except JWTError:
            return None

    @staticmethod
    def user_from_token(db: Session, token: str, token_type: str) -> Optional[User]:
        """
        Resolve a bearer or refresh token to an active user.

        Returns None for a bad signature, an expired token, the wrong token
        type, or a user that no longer exists or was deactivated.
        """
        payload = AuthService.decode_token(token)
        if payload is None or payload.type != token_type:
            return None

        try:
            user_id = UUID(payload.sub)
        except ValueError:
            return None

        user = AuthService.get_user_by_id(db, user_id)
        if user is None or not user.is_active:
            return None
        return user

    # Users

    @staticmethod
    def create_user(db: Session, user_data: UserCreate) -> User:
        """Register a user on the free plan with an empty query count."""
        db_user = User(
            email=user_data.email.lower(),
            username=user_data.username,
            hashed_password=AuthService.hash_password(user_data.password),
            full_name=user_data.full_name,
            user_type=user_data.user_type,
            airline=user_data.airline,
            employee_id=user_data.employee_id,
        )

        db.add(db_user)
        db.commit()
        db.refresh(db_user)

        logger.info(f"Registered user {db_user.id} ({db_user.airline or 'no airline'})")
        return db_user

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(func.lower(User.email) == email.lower()).first()

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[User]:
        return db.query(User).filter(User.username == username.strip().lower()).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: UUID) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def authenticate_user(db: Session, login: str, password: str) -> Optional[User]:
        """Check a username-or-email and password pair."""
        login = login.strip()
        user = db.query(User).filter(
            or_(User.username == login.lower(), func.lower(User.email) == login.lower())
        ).first()
        if not user or not AuthService.verify_password(password, user.hashed_password):
            return None
        return user

    @staticmethod
    def update_user(db: Session, user: User, user_update: UserUpdate) -> User:
        """Apply the fields present in ``user_update`` to the account."""
        changes = user_update.model_dump(exclude_unset=True)

        # Credentials cannot be cleared, only replaced.
        for field in ("email", "username", "password"):
            if changes.get(field) is None:
                changes.pop(field, None)

        password = changes.pop("password", None)
        if password:
            user.hashed_password = AuthService.hash_password(password)
        if "email" in changes:
            changes["email"] = changes["email"].lower()
        if "username" in changes:
            changes["username"] = changes["username"].strip().lower()

        for field, value in changes.items():
            setattr(user, field, value)

        db.commit()
        db.refresh(user)

        return user
