"""Pydantic models for retrieval results."""

from pydantic import BaseModel


class GeneralMatch(BaseModel):
    """A passage from the shared knowledge base."""

    score: float
    source: str
    text: str


class DocumentMatch(BaseModel):
    """A passage from a file uploaded into the requesting conversation."""

    score: float
    file_name: str
    file_type: str
    text: str
    chunk_index: int


class RetrievalResult(BaseModel):
    """Both match lists of one retrieval, ordered by descending score."""

    general: list[GeneralMatch] = []
    documents: list[DocumentMatch] = []
