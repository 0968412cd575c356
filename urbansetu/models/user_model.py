from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime
from enum import Enum
import uuid

from urbansetu.models.complaint_model import DEPARTMENT_MAPPING

# bcrypt only looks at the first 72 bytes of a password
PASSWORD_MAX_BYTES = 72

ADMIN_DEPARTMENTS = list(DEPARTMENT_MAPPING.values()) + ["Municipal Corporation"]


class UserType(str, Enum):
    citizen = "citizen"
    admin = "admin"


class UserBase(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    user_type: UserType = UserType.citizen
    phone: Optional[str] = None
    address: Optional[str] = None
    department: Optional[str] = None


class RegisterRequest(UserBase):
    password: str = Field(min_length=6)

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, v):
        if len(v.encode("utf-8")) > PASSWORD_MAX_BYTES:
            raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
        return v

    @model_validator(mode="after")
    def admin_department(self):
        """Admins pick the department they work for; citizens have none."""
        if self.user_type != UserType.admin:
            self.department = None
            return self
        department = (self.department or "").strip()
        if not department:
            raise ValueError("Department is required for admin accounts")
        if department not in ADMIN_DEPARTMENTS:
            raise ValueError(f"Unknown department '{department}'")
        self.department = department
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    user_type: UserType = UserType.citizen


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    class Config:
        extra = "forbid"


class User(UserBase):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    avatar: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class UserInDB(User):
    password_hash: str


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User
    redirect: str
