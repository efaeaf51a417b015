"""
User accounts and authentication for the restaurant staff.

- Login by username with bcrypt password check
- Access and refresh tokens (PyJWT)
- Admin-managed registration and role changes
- Default administrator bootstrap
"""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_
from typing import Optional, List
from uuid import UUID
import logging

from app.core.config import settings
from app.common.utils import utc_now
from app.modules.auth.models import User, UserRole
from app.modules.auth.schemas import UserCreate, UserUpdate, UserOut, TokenResponse
from app.modules.auth.utils import (
    hash_password, verify_password, create_access_token,
    create_refresh_token, verify_token, REFRESH
)

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, db: Session):
        self.db = db

    def _token_response(self, user: User, include_refresh: bool = True) -> TokenResponse:
        token_data = {
            "sub": str(user.id),
            "username": user.username,
            "role": user.role.value
        }
        return TokenResponse(
            access_token=create_access_token(token_data),
            token_type="bearer",
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=UserOut.model_validate(user),
            refresh_token=create_refresh_token(str(user.id)) if include_refresh else None
        )

    def login(self, username: str, password: str) -> TokenResponse:
        user = self.db.query(User).filter(User.username == username).first()

        if not user or not verify_password(password, user.password):
            logger.warning(f"Failed login attempt for '{username}'")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials"
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is deactivated"
            )

        user.last_login = utc_now()
        self.db.commit()
        self.db.refresh(user)

        logger.info(f"User {user.username} logged in ({user.role.value})")
        return self._token_response(user)

    def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """New access token from a valid refresh token."""
        payload = verify_token(refresh_token, REFRESH)

        try:
            user_id = UUID(payload.get("sub", ""))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")

        return self._token_response(user, include_refresh=False)

    def create_user(self, user_data: UserCreate) -> User:
        try:
            existing = self.db.query(User).filter(
                or_(User.username == user_data.username, User.email == user_data.email)
            ).first()
            if existing:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Username or email already exists"
                )

            user = User(
                username=user_data.username,
                email=user_data.email,
                password=hash_password(user_data.password),
                full_name=user_data.full_name,
                role=UserRole(user_data.role.value),
                is_active=True
            )
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)

            logger.info(f"Registered user {user.username} with role {user.role.value}")
            return user

        except HTTPException:
            raise
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Username or email already exists"
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error registering user: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {str(e)}"
            )

    def get_user(self, user_id: UUID) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    def list_users(self, role: Optional[str] = None, active_only: bool = False) -> List[User]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == UserRole(role))
        if active_only:
            query = query.filter(User.is_active == True)
        return query.order_by(User.username).all()

    def update_user(self, user_id: UUID, update: UserUpdate) -> User:
        user = self.get_user(user_id)
        data = update.model_dump(exclude_unset=True)

        if "email" in data and data["email"] != user.email:
            clash = self.db.query(User).filter(User.email == data["email"], User.id != user.id).first()
            if clash:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")

        for field, value in data.items():
            if field == "role" and value is not None:
                value = UserRole(value.value if hasattr(value, "value") else value)
            setattr(user, field, value)

        self.db.commit()
        self.db.refresh(user)
        return user


def ensure_default_admin(db: Session) -> Optional[User]:
    """
    Create the bootstrap administrator when no admin exists yet.

    Does nothing unless ADMIN_PASSWORD is configured.
    """
    if not settings.ADMIN_PASSWORD:
        return None

    existing = db.query(User).filter(User.role == UserRole.ADMIN).first()
    if existing:
        return None

    admin = User(
        username=settings.ADMIN_USERNAME,
        email=settings.ADMIN_EMAIL,
        password=hash_password(settings.ADMIN_PASSWORD),
        full_name="System Administrator",
        role=UserRole.ADMIN,
        is_active=True
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info(f"Default admin '{admin.username}' created")
    return admin
