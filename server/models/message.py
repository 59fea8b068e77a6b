"""Chat message data models"""
from enum import Enum
from pydantic import BaseModel
from typing import Literal, Optional

from models.cards import PublicMenu, RestaurantCard, RestaurantPatch, TruncationMeta
from models.chat_state import ChatState, GroundedState


class MessageKind(str, Enum):
    RESULTS = "results"
    ANSWER = "answer"
    RESTAURANT_PROFILE = "restaurant_profile"
    MENU = "menu"
    CLARIFY = "clarify"
    NO_RESULTS = "no_results"
    ERROR = "error"


class ChatMessage(BaseModel):
    """A message from the conversation history sent by the caller"""
    role: str  # 'user' | 'assistant'
    content: str = ""
    kind: Optional[str] = None
    restaurants: list[RestaurantCard] = []


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str
    kind: MessageKind
    restaurants: list[RestaurantCard] = []
    followup_chips: list[str] = []
    menu: Optional[PublicMenu] = None


class UIAction(BaseModel):
    """Button press from the results UI, handled without intent parsing"""
    type: Literal["LOAD_MORE_RESTAURANT"]
    restaurant_id: str
    offset: int = 0
    dietary: list[str] = []


class DiscoverResponse(BaseModel):
    message: AssistantMessage
    chat_state: ChatState
    grounded: Optional[GroundedState] = None
    meta: Optional[TruncationMeta] = None
    patch: Optional[RestaurantPatch] = None
    error_code: Optional[str] = None
    error_retryable: Optional[bool] = None
