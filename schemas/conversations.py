"""Pydantic schemas for conversation and message requests and responses."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from uuid import UUID


class ConversationCreate(BaseModel):
    """Schema for creating a conversation."""
    title: Optional[str] = Field(default="New conversation", max_length=255)


class ConversationUpdate(BaseModel):
    """Schema for renaming a conversation."""
    title: str = Field(..., min_length=1, max_length=255)


class ConversationResponse(BaseModel):
    """Schema for conversation responses."""
    id: UUID
    user_id: UUID
    title: str
    thread_id: Optional[str] = None
    created_at: datetime
    last_message_at: Optional[datetime] = None
    downloaded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    """Schema for message responses."""
    id: UUID
    conversation_id: UUID
    user_id: UUID
    role: str
    content: str
    reference: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("role", mode="before")
    @classmethod
    def _role_value(cls, value):
        return getattr(value, "value", value)


class FeedbackCreate(BaseModel):
    """Schema for rating an assistant message."""
    rating: int = Field(..., ge=-1, le=1, description="1 for helpful, -1 for not helpful")
    is_incorrect: bool = False
    comment: Optional[str] = Field(default=None, max_length=1000)


class FeedbackResponse(BaseModel):
    """Schema for feedback responses."""
    id: UUID
    message_id: UUID
    user_id: UUID
    rating: int
    is_incorrect: bool
    comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
