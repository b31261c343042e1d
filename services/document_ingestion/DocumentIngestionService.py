"""Ingestion of uploaded files into a conversation's slice of the vector index.

Extracts text, splits it into contiguous chunks, embeds and upserts the
chunks batch by batch. Every point carries the conversation_id of the
conversation the file was uploaded into.
"""

import uuid

from services.document_ingestion.FileProcessor import FileProcessor
from shared.clients.ClientInterface import CLIENT_ERRORS
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import DocumentChunkPoint, make_point_id
from shared.helper.HelperConfig import HelperConfig
from shared.helper.text_chunking import split_text
from shared.models.document import IngestionResult, ProcessedDocument
from shared.models.errors import IngestionError, UpstreamError, ValidationError


class DocumentIngestionService:
    """Parse → chunk → embed → upsert for one uploaded file at a time."""

    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        rag_client: RAGClientInterface,
        file_processor: FileProcessor | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._rag_client = rag_client
        self._file_processor = file_processor or FileProcessor(helper_config=helper_config)
        self._chunk_size = int(helper_config.get_number_val("UPLOAD_CHUNK_SIZE", default=8000))
        self._batch_size = int(helper_config.get_number_val("UPLOAD_BATCH_SIZE", default=100))

    ##########################################
    ################# CORE ###################
    ##########################################

    async def ingest_file(self, file_path: str, original_name: str, conversation_id: int) -> IngestionResult:
        """Ingest one uploaded file into the given conversation.

        Batches are committed one after another. A failure stops the run but
        leaves earlier batches in the index.

        Args:
            file_path (str): Location of the uploaded bytes. Not deleted here.
            original_name (str): File name as sent by the client.
            conversation_id (int): Conversation the vectors are scoped to.

        Returns:
            IngestionResult: Upload id, chunk count and point ids.

        Raises:
            ValidationError: If the file is rejected or yields no text.
            IngestionError: If an embedding or upsert call fails.
        """
        document = await self._file_processor.process_file(file_path, original_name)
        chunks = split_text(document.text, self._chunk_size)
        if not chunks:
            raise ValidationError("No text could be extracted from the file", detail=original_name)

        upload_id = uuid.uuid4().hex
        vector_ids: list[str] = []
        total_batches = (len(chunks) + self._batch_size - 1) // self._batch_size
        for batch_number, batch_start in enumerate(range(0, len(chunks), self._batch_size), start=1):
            batch = chunks[batch_start: batch_start + self._batch_size]
            try:
                vectors = await self._llm_client.do_embed(batch)
                points = self._build_points(document, conversation_id, upload_id, batch_start, batch, vectors, len(chunks))
                await self._rag_client.do_upsert_points(points)
            except CLIENT_ERRORS as e:
                self.logging.error(
                    "Ingestion of '%s' into conversation %s failed at batch %d of %d (%d chunks committed): %s",
                    original_name, conversation_id, batch_number, total_batches, len(vector_ids), e,
                )
                raise IngestionError(
                    "Failed to create document embeddings",
                    detail=str(e),
                    chunks_committed=len(vector_ids),
                ) from e
            vector_ids.extend(point["id"] for point in points)
            self.logging.debug("Committed batch %d of %d for '%s'", batch_number, total_batches, original_name)

        self.logging.info(
            "Ingested '%s' into conversation %s: %d chunks (upload %s)",
            original_name, conversation_id, len(vector_ids), upload_id,
        )
        return IngestionResult(
            conversation_id=conversation_id,
            file_name=original_name,
            file_type=document.file_type,
            upload_id=upload_id,
            chunks_created=len(vector_ids),
            vector_ids=vector_ids,
        )

    def _build_points(
        self,
        document: ProcessedDocument,
        conversation_id: int,
        upload_id: str,
        first_index: int,
        chunks: list[str],
        vectors: list[list[float]],
        total_chunks: int,
    ) -> list[dict]:
        points: list[dict] = []
        for offset, (chunk, vector) in enumerate(zip(chunks, vectors)):
            chunk_index = first_index + offset
            payload = DocumentChunkPoint(
                conversation_id=str(conversation_id),
                file_name=document.original_name,
                file_type=document.file_type.value,
                chunk_index=chunk_index,
                total_chunks=total_chunks,
                chunk_text=chunk,
                processed_at=document.processed_at,
                upload_id=upload_id,
            )
            points.append({
                "id": make_point_id(conversation_id, document.original_name, chunk_index, upload_id),
                "vector": vector,
                "payload": payload.model_dump(),
            })
        return points

    ##########################################
    ################ CLEANUP #################
    ##########################################

    async def do_delete_conversation_vectors(self, conversation_id: int) -> None:
        """Remove every vector of the conversation's uploaded documents.

        Raises:
            UpstreamError: If the vector index rejects the delete.
        """
        await self._delete_by_filter(
            [self._rag_client.filter_conversation(conversation_id)],
            "conversation %s" % conversation_id,
        )

    async def do_delete_upload_vectors(self, conversation_id: int, upload_id: str) -> None:
        """Remove the vectors of one upload inside a conversation.

        Raises:
            UpstreamError: If the vector index rejects the delete.
        """
        await self._delete_by_filter(
            [
                self._rag_client.filter_conversation(conversation_id),
                self._rag_client.filter_field_equals("upload_id", upload_id),
            ],
            "upload %s of conversation %s" % (upload_id, conversation_id),
        )

    async def _delete_by_filter(self, conditions: list[dict], label: str) -> None:
        try:
            await self._rag_client.do_delete_points_by_filter({"must": conditions})
        except CLIENT_ERRORS as e:
            self.logging.error("Deleting vectors of %s failed: %s", label, e)
            raise UpstreamError("Failed to delete document vectors", detail=str(e)) from e
        self.logging.info("Deleted vectors of %s", label)
