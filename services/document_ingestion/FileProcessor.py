"""Plain-text extraction from uploaded PDF, CSV and Excel files.

The declared type comes from the file extension and is confirmed against the
file's leading bytes before any parser touches it. The parsers are blocking
and run in a worker thread.
"""

import asyncio
import codecs
import os
import zipfile
from datetime import datetime, timezone

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from shared.helper.HelperConfig import HelperConfig
from shared.models.document import EXTENSION_FILE_TYPES, FileType, ProcessedDocument
from shared.models.errors import ValidationError

PDF_SIGNATURE = b"%PDF-"
XLSX_SIGNATURE = b"PK\x03\x04"
SIGNATURE_PROBE_BYTES = 8192

_PARSER_ERRORS = (
    PyPdfError,
    pd.errors.ParserError,
    pd.errors.EmptyDataError,
    InvalidFileException,
    zipfile.BadZipFile,
    UnicodeDecodeError,
    KeyError,
    ValueError,
)


class FileProcessor:
    """Turns one uploaded file into a ProcessedDocument."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @staticmethod
    def detect_file_type(file_name: str) -> FileType:
        """Map a file name to its declared type.

        Raises:
            ValidationError: If the extension is not .pdf, .csv or .xlsx.
        """
        ext = os.path.splitext(file_name)[1].lower()
        file_type = EXTENSION_FILE_TYPES.get(ext)
        if file_type is None:
            raise ValidationError(
                "Unsupported file type",
                detail=f"'{ext or file_name}' is not one of {', '.join(EXTENSION_FILE_TYPES)}",
            )
        return file_type

    @staticmethod
    def check_signature(file_path: str, file_type: FileType) -> None:
        """Confirm that the file content matches its declared type.

        Raises:
            ValidationError: If the leading bytes do not belong to file_type.
        """
        with open(file_path, "rb") as f:
            head = f.read(SIGNATURE_PROBE_BYTES)

        if file_type == FileType.PDF:
            valid = head.startswith(PDF_SIGNATURE)
        elif file_type == FileType.EXCEL:
            valid = head.startswith(XLSX_SIGNATURE)
        else:
            valid = b"\x00" not in head
            if valid:
                try:
                    # the probe may end inside a multi-byte character
                    codecs.getincrementaldecoder("utf-8")().decode(head, final=False)
                except UnicodeDecodeError:
                    valid = False

        if not valid:
            raise ValidationError(
                "File content does not match its extension",
                detail=f"expected {file_type.value} content",
            )

    ##########################################
    ############### EXTRACTORS ###############
    ##########################################

    @staticmethod
    def extract_pdf(file_path: str) -> tuple[str, dict]:
        reader = PdfReader(file_path)
        if reader.is_encrypted:
            raise ValidationError("Encrypted PDF files are not supported")
        pages = [page.extract_text() or "" for page in reader.pages]
        info = {str(key).lstrip("/"): str(value) for key, value in (reader.metadata or {}).items()}
        return "\n".join(pages), {"pages": len(pages), "info": info}

    @staticmethod
    def extract_csv(file_path: str) -> tuple[str, dict]:
        frame = pd.read_csv(file_path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        headers = [str(column) for column in frame.columns]
        lines = ["=== CSV Data ==="]
        for row_number, row in enumerate(frame.itertuples(index=False, name=None), start=1):
            row_text = " | ".join(f"{header}: {value}" for header, value in zip(headers, row))
            lines.append(f"Row {row_number}: {row_text}")
        return "\n".join(lines) + "\n", {"rows": len(frame), "headers": headers}

    @staticmethod
    def extract_excel(file_path: str) -> tuple[str, dict]:
        workbook = load_workbook(file_path, read_only=True, data_only=True)
        try:
            parts: list[str] = []
            sheet_rows: dict[str, int] = {}
            total_rows = 0
            for sheet in workbook.worksheets:
                parts.append(f"\n=== Sheet: {sheet.title} ===\n")
                count = 0
                for row_number, row in enumerate(sheet.iter_rows(values_only=True), start=1):
                    cells = ["" if cell is None else str(cell) for cell in row]
                    while cells and not cells[-1].strip():
                        cells.pop()
                    if not cells:
                        continue
                    parts.append(f"Row {row_number}: {' | '.join(cells)}\n")
                    count += 1
                sheet_rows[sheet.title] = count
                total_rows += count
            metadata = {"sheets": len(workbook.worksheets), "total_rows": total_rows, "sheet_rows": sheet_rows}
            return "".join(parts), metadata
        finally:
            workbook.close()

    ##########################################
    ################# CORE ###################
    ##########################################

    async def process_file(self, file_path: str, original_name: str) -> ProcessedDocument:
        """Validate and extract one uploaded file.

        Args:
            file_path (str): Location of the uploaded bytes on local disk.
            original_name (str): File name as sent by the client.

        Returns:
            ProcessedDocument: The extracted text with per-type metadata.

        Raises:
            ValidationError: If the type is unsupported, the signature does not
                match, or the parser rejects the content.
        """
        file_type = self.detect_file_type(original_name)
        await asyncio.to_thread(self.check_signature, file_path, file_type)

        extractor = {
            FileType.PDF: self.extract_pdf,
            FileType.CSV: self.extract_csv,
            FileType.EXCEL: self.extract_excel,
        }[file_type]
        try:
            text, metadata = await asyncio.to_thread(extractor, file_path)
        except ValidationError:
            raise
        except _PARSER_ERRORS as e:
            self.logging.warning("Failed to parse %s file '%s': %s", file_type.value, original_name, e)
            raise ValidationError(f"Failed to process {file_type.value.upper()} file", detail=str(e)) from e

        processed_at = datetime.now(timezone.utc).isoformat()
        metadata.update({
            "original_name": original_name,
            "processed_at": processed_at,
            "file_size": os.path.getsize(file_path),
        })
        self.logging.info(
            "Extracted %d characters from %s file '%s'", len(text), file_type.value, original_name,
        )
        return ProcessedDocument(
            file_type=file_type,
            original_name=original_name,
            text=text,
            processed_at=processed_at,
            metadata=metadata,
        )
