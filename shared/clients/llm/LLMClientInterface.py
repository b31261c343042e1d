from abc import abstractmethod
from typing import AsyncIterator, Tuple

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig


class LLMClientInterface(ClientInterface):
    """Language model backend used for both embeddings and streamed chat.

    LLM_MODEL names the embedding model, LLM_CHAT_MODEL the chat model
    (falls back to LLM_MODEL), LLM_DISTANCE the metric the index is built with.
    """

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)
        self.embed_distance = helper_config.get_string_val("LLM_DISTANCE", default="Cosine")
        self.embed_model = helper_config.get_string_val("LLM_MODEL", default=None)
        self.chat_model = helper_config.get_string_val("LLM_CHAT_MODEL", default="") or None

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_client_type(self) -> str:
        return "llm"

    def get_chat_model(self) -> str:
        return self.chat_model or self.embed_model

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        pass

    @abstractmethod
    def get_chat_stream_payload(self, messages: list[dict], temperature: float | None = None, max_tokens: int | None = None) -> dict:
        """Body of a streamed chat request.

        Args:
            messages (list[dict]): Role/content messages, system prompt first.
            temperature (float | None): Sampling temperature, backend default when None.
            max_tokens (int | None): Generation limit, backend default when None.
        """
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Vectors of an embedding response, in the order the texts were sent."""
        pass

    @abstractmethod
    def extract_stream_fragment(self, line: str) -> Tuple[str | None, bool]:
        """Parse one line of a streamed chat response.

        Returns:
            Tuple[str | None, bool]: (text fragment or None, whether the stream is finished)

        Raises:
            ValueError: If the line reports a backend error or cannot be parsed.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_embedding_vector_size(self) -> Tuple[int, str]:
        """Dimension and distance metric of the embedding model.

        Measures the embedding of a probe text; engines that expose model
        details override this.
        """
        vectors = await self.do_embed(["dimension probe"])
        return len(vectors[0]), self.embed_distance

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Embed one or more texts.

        Raises:
            ClientRequestError: If the backend answers with a non-2xx status.
            ValueError: If the number of vectors does not match the number of texts.
        """
        texts = [texts] if isinstance(texts, str) else texts
        response = await self.do_request(
            method="POST", endpoint=self.get_endpoint_embedding(), json=self.get_embed_payload(texts), raise_on_error=True,
        )
        embeddings = self.extract_embeddings_from_response(response.json())
        if len(embeddings) != len(texts):
            raise ValueError("Embedding backend returned %d vectors for %d texts." % (len(embeddings), len(texts)))
        return embeddings

    async def do_chat_stream(self, messages: list[dict], temperature: float | None = None, max_tokens: int | None = None) -> AsyncIterator[str]:
        """Yield the answer fragment by fragment, skipping empty ones.

        The upstream response is open only while the caller iterates. Closing
        the generator early (aclose() or an exception in ``async for``) closes
        the HTTP stream and aborts generation.

        Raises:
            ClientRequestError: If the backend rejects the request.
            ValueError: If the backend reports an error mid-stream.
        """
        body = self.get_chat_stream_payload(messages, temperature=temperature, max_tokens=max_tokens)
        async with self.do_stream(method="POST", endpoint=self._get_endpoint_chat(), json=body) as response:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                fragment, finished = self.extract_stream_fragment(line)
                if fragment:
                    yield fragment
                if finished:
                    break
