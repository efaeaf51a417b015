"""
Authentication dependencies for FastAPI.

Routers guard endpoints with ``AuthDependencies.require_role(...)`` and one
of the role groups below.
"""
from typing import List
from uuid import UUID
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.auth.models import User
from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import verify_token, ACCESS

security = HTTPBearer()

ALL_ROLES = ["admin", "manager", "cashier", "kitchen_staff", "owner"]
MANAGEMENT_ROLES = ["admin", "manager", "owner"]
FRONT_OF_HOUSE_ROLES = ["admin", "manager", "cashier", "owner"]
KITCHEN_ROLES = ["admin", "manager", "kitchen_staff", "owner"]


class AuthDependencies:

    @staticmethod
    def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: Session = Depends(get_db)
    ) -> User:
        """Active staff member behind a bearer access token, else 401."""
        rejected = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = verify_token(credentials.credentials, ACCESS)
            user_id = UUID(payload.get("sub") or "")
        except (HTTPException, ValueError):
            raise rejected

        user = db.query(User).filter(User.id == user_id).first()
        if user is None or not user.is_active:
            raise rejected
        return user

    @staticmethod
    def get_auth_context(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: Session = Depends(get_db)
    ) -> AuthContext:
        user = AuthDependencies.get_current_user(credentials, db)
        return AuthContext(
            user_id=user.id,
            username=user.username,
            full_name=user.full_name,
            role=user.role.value
        )

    @staticmethod
    def require_role(allowed_roles: List[str]):
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if auth_context.role.value not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"One of these roles is required: {', '.join(allowed_roles)}"
                )
            return auth_context
        return role_checker

    @staticmethod
    def require_admin():
        return AuthDependencies.require_role(["admin"])


get_current_user = AuthDependencies.get_current_user
