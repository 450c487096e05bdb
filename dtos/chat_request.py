from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from uuid import UUID


class ChatRequest(BaseModel):
    """Body of a chat-completion call. Field names follow the web client's camelCase."""
    content: str = Field(..., min_length=1, max_length=8000)
    subscription_plan: Optional[str] = Field(default="free", alias="subscriptionPlan")
    conversation_id: Optional[UUID] = Field(default=None, alias="conversationId")
    assistant_id: Optional[str] = Field(default=None, alias="assistantId")
    priority: Optional[bool] = False
    stream: Optional[bool] = False
    retry_count: int = Field(default=1, ge=0, le=10, alias="retryCount", description="Client-requested extra retries")

    model_config = ConfigDict(populate_by_name=True)
