"""Knowledge base synchronisation.

Reads every PDF in the knowledge documents directory, normalises and splits
its text into overlapping chunks, embeds them and upserts the vectors as
general knowledge (no conversation_id). A file whose SHA-256 is already in
the index is skipped, so re-running the job over the same files is a no-op.
"""

import asyncio
import hashlib
import os
import shutil
from datetime import datetime, timezone

from pydantic import BaseModel

from services.document_ingestion.FileProcessor import FileProcessor
from shared.clients.ClientInterface import CLIENT_ERRORS
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import KnowledgeChunkPoint, make_point_id
from shared.helper.HelperConfig import HelperConfig
from shared.helper.text_chunking import normalize_text, split_text
from shared.models.document import FileType

SNAP_WINDOW = 50         # characters searched around each cut for a sentence end
BATCH_SIZE = 100         # max texts per embedding request and points per upsert
FILE_CONCURRENCY = 2     # max parallel file syncs


def _hash_file(file_path: str) -> str:
    """SHA-256 hex digest of the file bytes."""
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()


class SyncSummary(BaseModel):
    synced: int = 0
    skipped: int = 0
    errors: int = 0


class KnowledgeSyncService:
    """Orchestrates the offline sync from the documents directory to the RAG backend."""

    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._rag_client = rag_client
        self._documents_dir = helper_config.get_string_val("KNOWLEDGE_DOCUMENTS_DIR", default="documents")
        self._processed_dir = helper_config.get_string_val("KNOWLEDGE_PROCESSED_DIR", default="processed")
        self._chunk_size = int(helper_config.get_number_val("KNOWLEDGE_CHUNK_SIZE", default=1000))
        self._chunk_overlap = int(helper_config.get_number_val("KNOWLEDGE_CHUNK_OVERLAP", default=200))

    ##########################################
    ############### COLLECTION ###############
    ##########################################

    async def do_ensure_collection(self) -> None:
        """Create the collection if missing, sized for the embedding model."""
        if await self._rag_client.do_existence_check():
            return
        vector_size, distance = await self._llm_client.do_fetch_embedding_vector_size()
        self.logging.info("Creating collection (vector size %d, distance %s)", vector_size, distance)
        await self._rag_client.do_create_collection(vector_size=vector_size, distance=distance)

    ##########################################
    ############### CORE SYNC ################
    ##########################################

    def list_pending_files(self) -> list[str]:
        """PDF files waiting in the documents directory, sorted by name."""
        os.makedirs(self._documents_dir, exist_ok=True)
        return [
            os.path.join(self._documents_dir, name)
            for name in sorted(os.listdir(self._documents_dir))
            if name.lower().endswith(".pdf") and os.path.isfile(os.path.join(self._documents_dir, name))
        ]

    async def do_full_sync(self) -> SyncSummary:
        """Sync every pending PDF. A failing file is logged and does not stop the run."""
        files = self.list_pending_files()
        if not files:
            self.logging.info("No PDF files found in %s", self._documents_dir)
            return SyncSummary()

        self.logging.info("Processing %d PDF file(s) from %s...", len(files), self._documents_dir)
        sem = asyncio.Semaphore(FILE_CONCURRENCY)
        results = await asyncio.gather(
            *[self._sync_file_guarded(file_path, sem) for file_path in files],
            return_exceptions=True,
        )

        summary = SyncSummary(
            synced=sum(1 for r in results if r is True),
            skipped=sum(1 for r in results if r is False),
            errors=sum(1 for r in results if isinstance(r, Exception)),
        )
        self.logging.info(
            "Knowledge sync complete: %d synced, %d skipped, %d errors.",
            summary.synced, summary.skipped, summary.errors,
        )
        return summary

    async def _sync_file_guarded(self, file_path: str, sem: asyncio.Semaphore) -> bool:
        async with sem:
            try:
                return await self.do_sync_file(file_path)
            except Exception as exc:
                self.logging.error("Failed to process %s: %s", file_path, exc)
                raise

    async def do_sync_file(self, file_path: str) -> bool:
        """Embed and upsert a single PDF as general knowledge.

        Args:
            file_path (str): Path of the PDF inside the documents directory.

        Returns:
            bool: True if synced, False if skipped (duplicate or no text).
        """
        file_name = os.path.basename(file_path)
        content_hash = await asyncio.to_thread(_hash_file, file_path)

        if await self._is_known_hash(content_hash):
            self.logging.info("File %s was already processed (duplicate detected)", file_name)
            await asyncio.to_thread(self._move_to_processed, file_path)
            return False

        await asyncio.to_thread(FileProcessor.check_signature, file_path, FileType.PDF)
        raw_text, pdf_metadata = await asyncio.to_thread(FileProcessor.extract_pdf, file_path)
        chunks = split_text(normalize_text(raw_text), self._chunk_size, self._chunk_overlap, SNAP_WINDOW)
        if not chunks:
            self.logging.warning("Skipping %s: no extractable text.", file_name)
            return False

        vectors: list[list[float]] = []
        for batch_start in range(0, len(chunks), BATCH_SIZE):
            vectors.extend(await self._llm_client.do_embed(chunks[batch_start: batch_start + BATCH_SIZE]))
            self.logging.debug(
                "Processed embeddings batch %d of %d for %s",
                batch_start // BATCH_SIZE + 1, (len(chunks) + BATCH_SIZE - 1) // BATCH_SIZE, file_name,
            )

        # delete stale chunks of an earlier version of this file before upserting
        await self.do_delete_source_vectors(file_name)

        title = pdf_metadata.get("info", {}).get("Title") or os.path.splitext(file_name)[0]
        processed_at = datetime.now(timezone.utc).isoformat()
        points: list[dict] = []
        for chunk_index, (chunk, vector) in enumerate(zip(chunks, vectors)):
            payload = KnowledgeChunkPoint(
                source=file_name,
                title=title,
                pages=pdf_metadata.get("pages", 0),
                chunk_index=chunk_index,
                total_chunks=len(chunks),
                chunk_text=chunk,
                content_hash=content_hash,
                processed_at=processed_at,
            )
            points.append({
                "id": make_point_id("knowledge", file_name, chunk_index),
                "vector": vector,
                "payload": payload.model_dump(),
            })

        try:
            for batch_start in range(0, len(points), BATCH_SIZE):
                await self._rag_client.do_upsert_points(points[batch_start: batch_start + BATCH_SIZE], general_knowledge=True)
        except CLIENT_ERRORS:
            # committed batches carry the content hash and would mark the file as done
            await self._discard_partial_upsert(file_name)
            raise

        await asyncio.to_thread(self._move_to_processed, file_path)
        self.logging.info("Synced %s: %d chunks upserted.", file_name, len(points))
        return True

    async def _is_known_hash(self, content_hash: str) -> bool:
        count = await self._rag_client.do_count([
            self._rag_client.filter_general_knowledge(),
            self._rag_client.filter_field_equals("content_hash", content_hash),
        ])
        return count > 0

    async def _discard_partial_upsert(self, file_name: str) -> None:
        """Remove the batches of a file whose upsert failed part-way."""
        try:
            await self.do_delete_source_vectors(file_name)
        except CLIENT_ERRORS as e:
            self.logging.error(
                "Could not remove partial chunks of %s, delete them with --cleanup-file before the next run: %s",
                file_name, e,
            )
            return
        self.logging.warning("Removed partially upserted chunks of %s; it stays pending.", file_name)

    def _move_to_processed(self, file_path: str) -> None:
        os.makedirs(self._processed_dir, exist_ok=True)
        shutil.move(file_path, os.path.join(self._processed_dir, os.path.basename(file_path)))

    ##########################################
    ################ CLEANUP #################
    ##########################################

    async def do_delete_source_vectors(self, file_name: str) -> None:
        """Remove all general knowledge vectors taken from the given file."""
        await self._rag_client.do_delete_points_by_filter({
            "must": [
                self._rag_client.filter_general_knowledge(),
                self._rag_client.filter_field_equals("source", file_name),
            ]
        })

    async def do_cleanup_file(self, file_name: str) -> int:
        """Remove every vector that names the file, knowledge and uploaded alike.

        Collects the point ids of all chunks whose source or file_name equals
        file_name and deletes them by id in batches.

        Returns:
            int: Number of deleted points.
        """
        point_ids: list[str] = []
        for key in ("source", "file_name"):
            point_ids.extend(await self._rag_client.do_collect_point_ids([self._rag_client.filter_field_equals(key, file_name)]))

        if not point_ids:
            self.logging.info("No vectors found for file name %s", file_name)
            return 0

        total_batches = (len(point_ids) + BATCH_SIZE - 1) // BATCH_SIZE
        for batch_start in range(0, len(point_ids), BATCH_SIZE):
            await self._rag_client.do_delete_points(point_ids[batch_start: batch_start + BATCH_SIZE])
            self.logging.info("Deleted batch %d of %d", batch_start // BATCH_SIZE + 1, total_batches)
        self.logging.info("Deleted %d vectors for file name %s", len(point_ids), file_name)
        return len(point_ids)
