import os
import tempfile

from fastapi import APIRouter, Depends, File, Form, Header, Request, UploadFile

from server.core.RetrievalService import RetrievalService
from server.dependencies.auth import get_current_user_id, verify_api_key
from server.models.requests import DocumentSearchRequest
from server.models.responses import (
    DeleteResponse,
    DocumentItem,
    DocumentListResponse,
    DocumentSearchItem,
    DocumentSearchResponse,
    UploadResponse,
)
from services.document_ingestion.DocumentIngestionService import DocumentIngestionService
from services.document_ingestion.FileProcessor import FileProcessor
from shared.db.ConversationRepository import ConversationRepository
from shared.models.errors import ValidationError

router = APIRouter(prefix="/api", tags=["documents"], dependencies=[Depends(verify_api_key)])

UPLOAD_READ_SIZE = 1024 * 1024


async def _store_upload(file: UploadFile, upload_dir: str, max_bytes: int) -> str:
    """Copy the upload into a fresh temp file under upload_dir, enforcing the size limit.

    The client's file name is never used as a path. The caller removes the file.
    """
    os.makedirs(upload_dir, exist_ok=True)
    suffix = os.path.splitext(file.filename or "")[1].lower()
    fd, path = tempfile.mkstemp(prefix="upload-", suffix=suffix, dir=upload_dir)
    written = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while chunk := await file.read(UPLOAD_READ_SIZE):
                written += len(chunk)
                if written > max_bytes:
                    raise ValidationError("File too large", detail=f"limit is {max_bytes} bytes")
                out.write(chunk)
    except BaseException:
        os.remove(path)
        raise
    if written == 0:
        os.remove(path)
        raise ValidationError("Uploaded file is empty")
    return path


@router.post("/upload")
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    conversationId: int | None = Form(default=None),
    x_conversation_id: int | None = Header(default=None),
    user_id: str = Depends(get_current_user_id),
) -> UploadResponse:
    """Ingest one file into a conversation's document index.

    Args:
        request (Request): FastAPI request (provides app.state).
        file (UploadFile): The uploaded PDF, CSV or XLSX file.
        conversationId (int | None): Target conversation as form field.
        x_conversation_id (int | None): Target conversation as X-Conversation-Id header.
        user_id (str): The authenticated user.

    Returns:
        UploadResponse: The registered document and its chunk count.

    Raises:
        ValidationError: Missing conversation, unsupported type, size or signature mismatch.
        AuthorizationError: If the conversation is not owned by the user.
        IngestionError: If embedding or upserting fails part-way.
    """
    helper_config = request.app.state.helper_config
    repository: ConversationRepository = request.app.state.repository
    ingestion_service: DocumentIngestionService = request.app.state.ingestion_service

    conversation_id = conversationId if conversationId is not None else x_conversation_id
    if conversation_id is None:
        raise ValidationError("Conversation ID is required", detail="send conversationId or X-Conversation-Id")
    original_name = os.path.basename(file.filename or "")
    if not original_name:
        raise ValidationError("No file uploaded")

    file_type = FileProcessor.detect_file_type(original_name)
    await repository.get_conversation(conversation_id, user_id)

    upload_dir = helper_config.get_string_val("UPLOAD_DIR", default="uploads")
    max_bytes = int(helper_config.get_number_val("UPLOAD_MAX_BYTES", default=10 * 1024 * 1024))
    path = await _store_upload(file, upload_dir, max_bytes)
    try:
        result = await ingestion_service.ingest_file(path, original_name, conversation_id)
    finally:
        os.remove(path)

    document = await repository.add_document(
        conversation_id, original_name, file_type.value, result.chunks_created, result.upload_id,
    )
    await repository.update_conversation_timestamp(conversation_id)
    return UploadResponse(
        documentId=document.id,
        conversationId=conversation_id,
        fileName=original_name,
        fileType=file_type.value,
        chunksCreated=result.chunks_created,
        message=f"Document processed into {result.chunks_created} chunks",
    )


@router.get("/conversations/{conversation_id}/documents")
async def list_documents(
    request: Request,
    conversation_id: int,
    user_id: str = Depends(get_current_user_id),
) -> DocumentListResponse:
    repository: ConversationRepository = request.app.state.repository
    documents = await repository.list_documents(conversation_id, user_id)
    return DocumentListResponse(
        conversationId=conversation_id,
        documents=[
            DocumentItem(
                id=d.id, fileName=d.file_name, fileType=d.file_type,
                chunkCount=d.chunk_count, createdAt=d.created_at,
            )
            for d in documents
        ],
    )


@router.delete("/conversations/{conversation_id}/documents/{document_id}")
async def delete_document(
    request: Request,
    conversation_id: int,
    document_id: int,
    user_id: str = Depends(get_current_user_id),
) -> DeleteResponse:
    """Remove one uploaded document and its vectors from the conversation."""
    repository: ConversationRepository = request.app.state.repository
    ingestion_service: DocumentIngestionService = request.app.state.ingestion_service

    document = await repository.get_document(conversation_id, document_id, user_id)
    await ingestion_service.do_delete_upload_vectors(conversation_id, document.upload_id)
    await repository.delete_document(document.id)
    return DeleteResponse(message=f"Document '{document.file_name}' deleted")


@router.post("/documents/search")
async def search_documents(
    request: Request,
    body: DocumentSearchRequest,
    user_id: str = Depends(get_current_user_id),
) -> DocumentSearchResponse:
    """Similarity search restricted to the conversation's uploaded documents."""
    if not body.query.strip():
        raise ValidationError("Query is required")
    repository: ConversationRepository = request.app.state.repository
    retrieval_service: RetrievalService = request.app.state.retrieval_service

    await repository.get_conversation(body.conversationId, user_id)
    matches = await retrieval_service.search_documents(body.query, body.conversationId, body.topK)
    return DocumentSearchResponse(
        query=body.query,
        conversationId=body.conversationId,
        results=[
            DocumentSearchItem(
                fileName=m.file_name, fileType=m.file_type, chunkIndex=m.chunk_index,
                text=m.text, score=m.score,
            )
            for m in matches
        ],
        total=len(matches),
    )
