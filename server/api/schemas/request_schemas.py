"""API request schemas"""
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

from models.chat_state import ChatState
from models.message import ChatMessage, UIAction


class DiscoverRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list, max_length=100)
    chat_state: Optional[ChatState] = None
    ui_action: Optional[UIAction] = None

    @field_validator("messages")
    @classmethod
    def validate_messages(cls, v: List[ChatMessage]) -> List[ChatMessage]:
        for message in v:
            if message.role not in ("user", "assistant"):
                raise ValueError("message role must be 'user' or 'assistant'")
            if len(message.content) > 5000:
                raise ValueError("message content must be at most 5000 characters")
        return v
