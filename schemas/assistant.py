"""Typed views of the assistant provider's thread, run and message payloads."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict

TERMINAL_RUN_STATUSES = {"completed", "failed", "cancelled", "expired", "incomplete", "requires_action"}


class ThreadObject(BaseModel):
    """A provider thread. Only the identifier is used."""
    id: str

    model_config = ConfigDict(extra="ignore")


class RunError(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None


class RunObject(BaseModel):
    """A provider run and its lifecycle status."""
    id: str
    thread_id: Optional[str] = None
    status: str
    last_error: Optional[RunError] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class TextValue(BaseModel):
    value: str = ""


class ContentPart(BaseModel):
    type: str
    text: Optional[TextValue] = None

    model_config = ConfigDict(extra="ignore")


class MessageObject(BaseModel):
    """A message stored on a provider thread."""
    id: str
    role: str
    created_at: int = 0
    content: List[ContentPart] = []

    model_config = ConfigDict(extra="ignore")

    @property
    def text(self) -> str:
        return "".join(part.text.value for part in self.content if part.type == "text" and part.text)


class MessageList(BaseModel):
    data: List[MessageObject] = []

    model_config = ConfigDict(extra="ignore")


class DeltaContentPart(BaseModel):
    index: int = 0
    type: str
    text: Optional[TextValue] = None

    model_config = ConfigDict(extra="ignore")


class MessageDelta(BaseModel):
    content: List[DeltaContentPart] = []

    model_config = ConfigDict(extra="ignore")


class MessageDeltaEvent(BaseModel):
    """Payload of a ``thread.message.delta`` stream event."""
    id: str
    delta: MessageDelta

    model_config = ConfigDict(extra="ignore")

    @property
    def text(self) -> str:
        return "".join(part.text.value for part in self.delta.content if part.type == "text" and part.text)


def error_message(payload: Dict[str, Any]) -> str:
    """Best-effort message from a provider ``error`` event payload."""
    error = payload.get("error", payload) if isinstance(payload, dict) else {}
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "unknown error")
    return str(error)
