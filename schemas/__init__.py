from .conversations import (
    ConversationCreate, ConversationUpdate, ConversationResponse,
    MessageResponse, FeedbackCreate, FeedbackResponse,
)
from .auth import UserCreate, UserUpdate, UserResponse, Token

__all__ = ["ConversationCreate", "ConversationUpdate", "ConversationResponse",
           "MessageResponse", "FeedbackCreate", "FeedbackResponse",
           "UserCreate", "UserUpdate", "UserResponse", "Token"]
