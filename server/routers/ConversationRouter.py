from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_current_user_id, verify_api_key
from server.models.responses import (
    ConversationListResponse,
    ConversationSummary,
    DeleteResponse,
    MessageItem,
    MessageListResponse,
)
from services.document_ingestion.DocumentIngestionService import DocumentIngestionService
from shared.db.ConversationRepository import ConversationRepository

router = APIRouter(prefix="/api/conversations", tags=["conversations"], dependencies=[Depends(verify_api_key)])


@router.get("")
async def list_conversations(request: Request, user_id: str = Depends(get_current_user_id)) -> ConversationListResponse:
    """List the user's conversations, most recently active first."""
    repository: ConversationRepository = request.app.state.repository
    rows = await repository.get_conversations(user_id)
    return ConversationListResponse(conversations=[
        ConversationSummary(
            id=conversation.id,
            title=conversation.title,
            createdAt=conversation.created_at,
            updatedAt=conversation.updated_at,
            firstMessage=first_message,
        )
        for conversation, first_message in rows
    ])


@router.get("/{conversation_id}/messages")
async def get_messages(
    request: Request,
    conversation_id: int,
    user_id: str = Depends(get_current_user_id),
) -> MessageListResponse:
    repository: ConversationRepository = request.app.state.repository
    messages = await repository.get_conversation_messages(conversation_id, user_id)
    return MessageListResponse(
        conversationId=conversation_id,
        messages=[
            MessageItem(id=m.id, role=m.role, content=m.content, metadata=m.meta, createdAt=m.created_at)
            for m in messages
        ],
    )


@router.delete("/{conversation_id}")
async def delete_conversation(
    request: Request,
    conversation_id: int,
    user_id: str = Depends(get_current_user_id),
) -> DeleteResponse:
    """Delete a conversation, its uploaded document vectors and its history.

    Vectors go first: if the vector index rejects the delete, the rows stay
    and the request can be retried.

    Raises:
        AuthorizationError: If the conversation is not owned by the user.
        UpstreamError: If the vector index or the database call fails.
    """
    repository: ConversationRepository = request.app.state.repository
    ingestion_service: DocumentIngestionService = request.app.state.ingestion_service

    await repository.get_conversation(conversation_id, user_id)
    await ingestion_service.do_delete_conversation_vectors(conversation_id)
    await repository.delete_conversation(conversation_id, user_id)
    return DeleteResponse(message=f"Conversation {conversation_id} deleted")
