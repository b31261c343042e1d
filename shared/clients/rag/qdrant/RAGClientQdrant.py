from typing import Any

import httpx
from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface, CONVERSATION_KEY
from shared.clients.rag.models.Search import ScrollPage, SearchHit
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    """Qdrant over its REST API. Conversation ids are stored as strings."""

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Qdrant"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default=None),
        ]

    def _get_auth_header(self) -> dict:
        return {"api-key": self._api_key} if self._api_key else {}

    ################ FILTERS ##################
    def filter_general_knowledge(self) -> dict:
        return {"is_empty": {"key": CONVERSATION_KEY}}

    def filter_conversation(self, conversation_id: str | int) -> dict:
        return self.filter_field_equals(CONVERSATION_KEY, str(conversation_id))

    def filter_field_equals(self, key: str, value: Any) -> dict:
        return {"key": key, "match": {"value": value}}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_collection(self) -> str:
        return f"/collections/{self._collection_name}"

    def _get_endpoint_collection_exists(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_collection_payload(self, vector_size: int, distance: str) -> dict:
        return {"vectors": {"size": vector_size, "distance": distance}}

    def get_search_payload(self, vector: list[float], limit: int, filters: list[dict]) -> dict:
        return {"vector": vector, "limit": limit, "with_payload": True, "filter": {"must": filters}}

    def get_count_payload(self, filters: list[dict]) -> dict:
        return {"filter": {"must": filters}, "exact": True}

    def get_scroll_payload(self, filters: list[dict], limit: int, offset: str | int | None) -> dict:
        payload = {"filter": {"must": filters}, "limit": limit, "with_payload": False, "with_vector": False}
        if offset is not None:
            payload["offset"] = offset
        return payload

    def get_delete_payload(self, filter: dict) -> dict:
        return {"filter": filter}

    def get_delete_ids_payload(self, ids: list[str]) -> dict:
        return {"points": ids}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_collection_exists(self, raw_response: dict) -> bool:
        return bool((raw_response.get("result") or {}).get("exists"))

    def extract_count(self, raw_response: dict) -> int:
        return int((raw_response.get("result") or {}).get("count", 0))

    def extract_scroll_page(self, raw_response: dict) -> ScrollPage:
        result = raw_response.get("result") or {}
        return ScrollPage(
            point_ids=[str(point["id"]) for point in result.get("points", [])],
            next_offset=result.get("next_page_offset"),
        )

    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        return [
            SearchHit(id=hit["id"], score=hit.get("score", 0.0), payload=hit.get("payload") or {})
            for hit in raw_response.get("result", [])
        ]
