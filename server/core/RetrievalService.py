import asyncio

from shared.clients.ClientInterface import CLIENT_ERRORS
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import CONVERSATION_KEY, RAGClientInterface
from shared.clients.rag.models.Search import SearchHit
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import RetrievalError
from shared.models.search import DocumentMatch, GeneralMatch, RetrievalResult


class RetrievalService:
    """Dual similarity search: shared knowledge base plus the conversation's own documents."""

    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._rag_client = rag_client
        self._general_top_k = int(helper_config.get_number_val("RETRIEVAL_GENERAL_TOP_K", default=3))
        self._document_top_k = int(helper_config.get_number_val("RETRIEVAL_DOCUMENT_TOP_K", default=3))
        self._search_top_k = int(helper_config.get_number_val("DOCUMENT_SEARCH_TOP_K", default=5))

    ##########################################
    ############### CORE #####################
    ##########################################

    async def retrieve(self, query: str, conversation_id: int) -> RetrievalResult:
        """Embed the query once and run both searches concurrently.

        All or nothing: if either search fails the whole retrieval fails.

        Args:
            query (str): The user's question.
            conversation_id (int): Scope of the document search.

        Returns:
            RetrievalResult: General and document matches.

        Raises:
            RetrievalError: If embedding or either search fails.
        """
        vector = await self._embed_query(query)
        try:
            general_hits, document_hits = await asyncio.gather(
                self._rag_client.do_search(
                    vector, self._general_top_k, [self._rag_client.filter_general_knowledge()],
                ),
                self._rag_client.do_search(
                    vector, self._document_top_k, [self._rag_client.filter_conversation(conversation_id)],
                ),
            )
        except CLIENT_ERRORS as e:
            self.logging.error("Vector search failed for conversation %s: %s", conversation_id, e)
            raise RetrievalError("Failed to retrieve context", detail=str(e)) from e

        result = RetrievalResult(
            general=[self._to_general_match(hit) for hit in general_hits],
            documents=self._to_document_matches(document_hits, conversation_id),
        )
        self.logging.debug(
            "Retrieved %d general and %d document matches for conversation %s",
            len(result.general), len(result.documents), conversation_id,
        )
        return result

    async def search_documents(self, query: str, conversation_id: int, top_k: int | None = None) -> list[DocumentMatch]:
        """Search only the documents uploaded into the conversation.

        Raises:
            RetrievalError: If embedding or the search fails.
        """
        vector = await self._embed_query(query)
        try:
            hits = await self._rag_client.do_search(
                vector, top_k or self._search_top_k, [self._rag_client.filter_conversation(conversation_id)],
            )
        except CLIENT_ERRORS as e:
            self.logging.error("Document search failed for conversation %s: %s", conversation_id, e)
            raise RetrievalError("Failed to search document chunks", detail=str(e)) from e

        matches = self._to_document_matches(hits, conversation_id)
        self.logging.info(
            "Document search in conversation %s: %d matches (%s)",
            conversation_id, len(matches), ", ".join(sorted({m.file_name for m in matches})),
        )
        return matches

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _embed_query(self, query: str) -> list[float]:
        try:
            vectors = await self._llm_client.do_embed([query])
        except CLIENT_ERRORS as e:
            self.logging.error("Query embedding failed: %s", e)
            raise RetrievalError("Failed to embed the query", detail=str(e)) from e
        return vectors[0]

    @staticmethod
    def _to_general_match(hit: SearchHit) -> GeneralMatch:
        return GeneralMatch(
            score=hit.score,
            source=str(hit.payload.get("source") or hit.payload.get("title") or "unknown"),
            text=hit.payload.get("chunk_text") or "",
        )

    def _to_document_matches(self, hits: list[SearchHit], conversation_id: int) -> list[DocumentMatch]:
        matches: list[DocumentMatch] = []
        for hit in hits:
            if str(hit.payload.get(CONVERSATION_KEY)) != str(conversation_id):
                self.logging.error(
                    "Dropping point %s: tagged for conversation %s but returned for conversation %s",
                    hit.id, hit.payload.get(CONVERSATION_KEY), conversation_id,
                )
                continue
            matches.append(DocumentMatch(
                score=hit.score,
                file_name=hit.payload.get("file_name") or "unknown",
                file_type=hit.payload.get("file_type") or "",
                text=hit.payload.get("chunk_text") or "",
                chunk_index=int(hit.payload.get("chunk_index") or 0),
            ))
        return matches
