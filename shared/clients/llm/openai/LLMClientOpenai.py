import json
from typing import Tuple

import httpx
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientOpenai(LLMClientInterface):
    """Client for OpenAI and OpenAI-compatible servers (vLLM, LM Studio, LiteLLM, ...)."""

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/models"

    def get_endpoint_embedding(self) -> str:
        return "/v1/embeddings"

    def _get_endpoint_chat(self) -> str:
        return "/v1/chat/completions"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        return {"model": self.embed_model, "input": texts}

    def get_chat_stream_payload(self, messages: list[dict], temperature: float | None = None, max_tokens: int | None = None) -> dict:
        payload = {"model": self.get_chat_model(), "messages": messages, "stream": True}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a /v1/embeddings response.

        The backend may return the items in any order, so they are sorted by
        their "index" field.

        Raises:
            ValueError: If the response does not contain embeddings.
        """
        data = response_data.get("data")
        if not data:
            raise ValueError(
                "OpenAI response does not contain embeddings. "
                "Response keys: %s" % list(response_data.keys())
            )
        return [item["embedding"] for item in sorted(data, key=lambda item: item.get("index", 0))]

    def extract_stream_fragment(self, line: str) -> Tuple[str | None, bool]:
        """Parse one server-sent-events line of a /v1/chat/completions stream.

        Only "data:" lines carry content; comments and other fields are skipped.
        The literal "data: [DONE]" terminates the stream.
        """
        if not line.startswith("data:"):
            return None, False
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return None, True
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError("Malformed OpenAI stream chunk: %s" % data[:200]) from e
        if "error" in chunk:
            raise ValueError("OpenAI stream reported an error: %s" % chunk["error"])
        choices = chunk.get("choices") or []
        if not choices:
            return None, False
        content = (choices[0].get("delta") or {}).get("content") or None
        return content, False
