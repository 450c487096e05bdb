from .conversations import Conversation, Base
from .messages import Message, MessageRole, MessageFeedback
from .users import User

__all__ = ["Conversation", "Message", "MessageRole", "MessageFeedback", "User", "Base"]
