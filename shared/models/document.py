"""Pydantic models for uploaded documents.

Hierarchy:
  FileType           the supported upload formats, derived from the extension.
  ProcessedDocument  plain text and metadata extracted from one file.
  IngestionResult    what the ingestion pipeline committed to the vector index.
"""

from enum import Enum

from pydantic import BaseModel


class FileType(str, Enum):
    PDF = "pdf"
    CSV = "csv"
    EXCEL = "excel"


EXTENSION_FILE_TYPES: dict[str, FileType] = {
    ".pdf": FileType.PDF,
    ".csv": FileType.CSV,
    ".xlsx": FileType.EXCEL,
}


class ProcessedDocument(BaseModel):
    """Text extracted from an uploaded file.

    metadata always holds original_name, processed_at and file_size, plus the
    per-type keys: pages/info for PDF, rows/headers for CSV and
    sheets/total_rows/sheet_rows for Excel.
    """

    file_type: FileType
    original_name: str
    text: str
    processed_at: str
    metadata: dict = {}


class IngestionResult(BaseModel):
    """Outcome of ingesting one file into a conversation."""

    conversation_id: int
    file_name: str
    file_type: FileType
    upload_id: str
    chunks_created: int
    vector_ids: list[str] = []
