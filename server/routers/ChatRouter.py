from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from server.core.ChatService import ChatService, ChatTurn
from server.dependencies.auth import get_current_user_id, verify_api_key
from server.models.requests import ChatRequest

router = APIRouter(prefix="/api", tags=["chat"], dependencies=[Depends(verify_api_key)])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _sse_stream(chat_service: ChatService, turn: ChatTurn, request: Request) -> AsyncIterator[str]:
    async for event in chat_service.stream_turn(turn, is_disconnected=request.is_disconnected):
        yield event.to_sse()


@router.post("/chat")
async def chat(
    request: Request,
    body: ChatRequest,
    user_id: str = Depends(get_current_user_id),
) -> StreamingResponse:
    """Stream an answer to the user's message as server-sent events.

    Validation and ownership errors are raised before the stream starts and
    are returned as regular JSON errors. Everything after that is reported
    in-band as an "error" event.

    Args:
        request (Request): FastAPI request (provides app.state.chat_service).
        body (ChatRequest): The message and an optional conversationId.
        user_id (str): The authenticated user.

    Returns:
        StreamingResponse: text/event-stream of conversation, content, done or error events.
    """
    chat_service: ChatService = request.app.state.chat_service
    turn = await chat_service.prepare_turn(user_id, body.message, body.conversationId)
    return StreamingResponse(
        _sse_stream(chat_service, turn, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
