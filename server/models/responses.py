from datetime import datetime

from pydantic import BaseModel


class ConversationSummary(BaseModel):
    id: int
    title: str
    createdAt: datetime
    updatedAt: datetime
    firstMessage: str | None = None


class ConversationListResponse(BaseModel):
    conversations: list[ConversationSummary]


class MessageItem(BaseModel):
    id: int
    role: str
    content: str
    metadata: dict | None = None
    createdAt: datetime


class MessageListResponse(BaseModel):
    conversationId: int
    messages: list[MessageItem]


class UploadResponse(BaseModel):
    success: bool = True
    documentId: int
    conversationId: int
    fileName: str
    fileType: str
    chunksCreated: int
    message: str


class DocumentItem(BaseModel):
    id: int
    fileName: str
    fileType: str
    chunkCount: int
    createdAt: datetime


class DocumentListResponse(BaseModel):
    conversationId: int
    documents: list[DocumentItem]


class DocumentSearchItem(BaseModel):
    fileName: str
    fileType: str
    chunkIndex: int
    text: str
    score: float


class DocumentSearchResponse(BaseModel):
    query: str
    conversationId: int
    results: list[DocumentSearchItem]
    total: int


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
    components: dict[str, bool]
