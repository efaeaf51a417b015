from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum

from app.common.validators import validate_username


class RoleEnum(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"
    KITCHEN_STAFF = "kitchen_staff"
    OWNER = "owner"


class UserLogin(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    full_name: str = Field(..., min_length=2, max_length=100)
    role: RoleEnum = RoleEnum.CASHIER

    @field_validator('username')
    @classmethod
    def check_username(cls, v):
        if not validate_username(v):
            raise ValueError('Username may only contain letters, digits, ".", "-" and "_"')
        return v.strip()


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None


class UserOut(BaseModel):
    id: UUID
    username: str
    email: str
    full_name: str
    role: RoleEnum
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserList(BaseModel):
    users: List[UserOut]
    total: int


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut
    refresh_token: Optional[str] = None


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class AuthContext(BaseModel):
    user_id: UUID
    username: str
    full_name: Optional[str] = None
    role: RoleEnum

    @property
    def display_name(self) -> str:
        return self.full_name or self.username
