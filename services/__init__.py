from .conversations import ConversationService, busy_conversations
from .auth import AuthService
from .access import ChatAccessService
from .assistant import AssistantClient

__all__ = ["ConversationService", "busy_conversations", "AuthService", "ChatAccessService", "AssistantClient"]
