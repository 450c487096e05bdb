"""Account and token schemas."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator
from uuid import UUID


class ProfileFields(BaseModel):
    """Crew profile details shown on the account page."""
    full_name: Optional[str] = Field(None, max_length=255)
    airline: Optional[str] = Field(None, max_length=100)
    user_type: Optional[str] = Field(None, max_length=50, description="Job title, e.g. flight attendant or pilot")
    employee_id: Optional[str] = Field(None, max_length=50)

    @field_validator("full_name", "airline", "user_type", "employee_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class UserCreate(ProfileFields):
    """Sign-up request."""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        return value.strip().lower()


class UserUpdate(ProfileFields):
    """Partial profile update. Omitted fields are left alone."""
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    password: Optional[str] = Field(None, min_length=6)


class UserResponse(ProfileFields):
    """Account as returned to the web client, including subscription state."""
    id: UUID
    email: EmailStr
    username: str
    is_active: bool
    is_admin: bool
    subscription_plan: str
    subscription_status: str
    query_count: int
    profile_complete: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenPayload(BaseModel):
    sub: str  # user id
    exp: int
    iat: int
    type: str  # "access" | "refresh"
