"""Payload models stored alongside each vector chunk in the RAG backend."""

import uuid

from pydantic import BaseModel

# Namespace for deterministic point ids. Changing it orphans every stored point.
POINT_ID_NAMESPACE = uuid.UUID("6f1c2b0e-5d8a-4c1e-9a47-3e2f8b6d1c90")


def make_point_id(*parts: object) -> str:
    """Derive a deterministic UUIDv5 point id from the given identity parts."""
    return str(uuid.uuid5(POINT_ID_NAMESPACE, ":".join(str(p) for p in parts)))


class DocumentChunkPoint(BaseModel):
    """Payload of a chunk taken from a file uploaded into a conversation.

    The conversation_id field is mandatory. It is the only boundary between the
    documents of different conversations, so every upsert of a document chunk
    must carry it and every document search must filter on it.

    Attributes:
        conversation_id:  MANDATORY owning conversation, stored as a string.
        file_name:        Original name of the uploaded file.
        file_type:        "pdf", "csv" or "excel".
        chunk_index:      Zero-based position of the chunk in the file.
        total_chunks:     Number of chunks the file was split into.
        chunk_text:       Raw text of the chunk.
        processed_at:     ISO-8601 UTC timestamp of the extraction.
        upload_id:        Per-upload suffix that keeps re-uploads of the same file apart.
    """

    conversation_id: str
    file_name: str
    file_type: str
    chunk_index: int
    total_chunks: int
    chunk_text: str
    processed_at: str
    upload_id: str


class KnowledgeChunkPoint(BaseModel):
    """Payload of a general knowledge chunk written by the offline sync job.

    Has no conversation_id key at all: its absence is what makes the chunk
    visible to every conversation.

    Attributes:
        source:        File name of the source PDF.
        title:         Title from the PDF metadata, falls back to the file stem.
        pages:         Page count of the source PDF.
        chunk_index:   Zero-based position of the chunk.
        total_chunks:  Number of chunks of the source.
        chunk_text:    Raw text of the chunk.
        content_hash:  SHA-256 hex digest of the source file bytes.
                       Identical across all chunks of the same file.
        processed_at:  ISO-8601 UTC timestamp of the sync run.
    """

    source: str
    title: str
    pages: int = 0
    chunk_index: int
    total_chunks: int
    chunk_text: str
    content_hash: str
    processed_at: str
