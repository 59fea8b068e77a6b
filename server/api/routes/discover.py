"""Discover API routes: one chat turn per request."""
from fastapi import APIRouter
import logging

from api.schemas.request_schemas import DiscoverRequest
from core.dependencies import get_engine
from models.message import DiscoverResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/chat", response_model=DiscoverResponse)
async def discover_chat(request: DiscoverRequest) -> DiscoverResponse:
    """
    Resolve one chat turn.

    The caller owns the conversation: it sends the message history and
    the ``chat_state`` returned by the previous turn, and stores the new
    ``chat_state`` from this response.  Engine failures come back as a
    normal body with ``message.kind == "error"`` and the state unchanged.
    """
    engine = get_engine()
    response = await engine.handle_turn(
        request.messages,
        chat_state=request.chat_state,
        ui_action=request.ui_action,
    )
    logger.info(
        f"Chat turn answered: kind={response.message.kind.value}, "
        f"cards={len(response.message.restaurants)}, patch={response.patch is not None}"
    )
    return response
