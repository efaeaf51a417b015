from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from app.dependencies.dbDependecies import get_db
from app.modules.auth.service import AuthService
from app.modules.auth.dependencies import AuthDependencies, get_current_user
from app.modules.auth.models import User
from app.modules.auth.schemas import (
    UserCreate, UserLogin, UserOut, UserUpdate, UserList,
    TokenResponse, RefreshTokenRequest, AuthContext, RoleEnum
)

auth_router = APIRouter()


@auth_router.post("/login", response_model=TokenResponse)
async def login(credentials: UserLogin, db: Session = Depends(get_db)):
    """
    Login with username and password.

    Returns an access token, a refresh token and the user profile.
    Deactivated accounts are rejected with 401.
    """
    return AuthService(db).login(credentials.username, credentials.password)


@auth_router.post("/refresh", response_model=TokenResponse)
async def refresh_token(request: RefreshTokenRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new access token."""
    return AuthService(db).refresh_access_token(request.refresh_token)


@auth_router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_admin()),
    db: Session = Depends(get_db)
):
    """
    Register a staff account. Admin only.

    - **username**: 3-50 characters, unique
    - **email**: unique
    - **role**: admin, manager, cashier, kitchen_staff or owner
    """
    return AuthService(db).create_user(user_data)


@auth_router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    """Profile of the authenticated user."""
    return current_user


@auth_router.get("/users", response_model=UserList)
async def list_users(
    role: Optional[RoleEnum] = Query(None),
    active_only: bool = Query(False),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(["admin", "manager"])),
    db: Session = Depends(get_db)
):
    """List staff accounts, optionally by role."""
    users = AuthService(db).list_users(role.value if role else None, active_only)
    return UserList(users=[UserOut.model_validate(u) for u in users], total=len(users))


@auth_router.patch("/users/{user_id}", response_model=UserOut)
async def update_user(
    user_id: UUID,
    update: UserUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_admin()),
    db: Session = Depends(get_db)
):
    """Change role, activation, name or email of a staff account. Admin only."""
    return AuthService(db).update_user(user_id, update)
