from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str
    conversationId: int | None = None


class DocumentSearchRequest(BaseModel):
    query: str
    conversationId: int
    topK: int = Field(default=5, ge=1, le=50)
