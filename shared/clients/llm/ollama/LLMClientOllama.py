import json
from typing import Tuple

import httpx
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientOllama(LLMClientInterface):
    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    def _get_auth_header(self) -> dict:
        # plain Ollama has no auth, a reverse proxy in front of it may
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    def get_endpoint_model_details(self) -> str:
        return "/api/show"

    def _get_endpoint_chat(self) -> str:
        return "/api/chat"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        return {"model": self.embed_model, "input": texts}

    def get_chat_stream_payload(self, messages: list[dict], temperature: float | None = None, max_tokens: int | None = None) -> dict:
        options: dict = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        payload = {"model": self.get_chat_model(), "messages": messages, "stream": True}
        if options:
            payload["options"] = options
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_vector_size_from_model_info(self, model_info: dict) -> int:
        """Find "<arch>.embedding_length" in the model details of /api/show."""
        for key, value in (model_info.get("model_info") or {}).items():
            if key.endswith(".embedding_length"):
                return int(value)
        raise ValueError("Could not determine embedding vector size for model '%s'" % self.embed_model)

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        embeddings = response_data.get("embeddings")
        if not embeddings or not embeddings[0]:
            raise ValueError("Ollama returned no embeddings (response keys: %s)" % list(response_data.keys()))
        return embeddings

    def extract_stream_fragment(self, line: str) -> Tuple[str | None, bool]:
        """Parse one NDJSON line of /api/chat.

        Lines look like {"message": {"content": "..."}, "done": bool}; a line
        with an "error" key ends the stream with a failure.
        """
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError("Malformed Ollama stream line: %s" % line[:200]) from e
        if "error" in data:
            raise ValueError("Ollama stream reported an error: %s" % data["error"])
        content = (data.get("message") or {}).get("content") or None
        return content, bool(data.get("done", False))

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_embedding_vector_size(self) -> Tuple[int, str]:
        response = await self.do_request(
            method="POST",
            endpoint=self.get_endpoint_model_details(),
            json={"name": self.embed_model},
            raise_on_error=True,
        )
        return self.extract_vector_size_from_model_info(response.json()), self.embed_distance
