from abc import abstractmethod
from typing import Any

import httpx
from shared.clients.rag.models.Search import ScrollPage, SearchHit
from shared.clients.ClientInterface import ClientInterface

from shared.helper.HelperConfig import HelperConfig

CONVERSATION_KEY = "conversation_id"
SCROLL_PAGE_SIZE = 1000


class RAGClientInterface(ClientInterface):
    """Vector index holding both scopes of chunks in one collection.

    General knowledge points carry no conversation_id, uploaded document
    points always carry the id of the conversation that owns them. Filters
    are built by the engine and combined by the caller with AND semantics.
    """

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(helper_config=helper_config, transport=transport)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def check_points_scope(self, points: list[dict[str, Any]], general_knowledge: bool) -> None:
        """Refuse points whose payload contradicts the scope they are written to.

        Raises:
            ValueError: If a document point lacks a conversation_id or a
                knowledge point has one.
        """
        for point in points:
            owner = (point.get("payload") or {}).get(CONVERSATION_KEY)
            if general_knowledge and owner is not None:
                raise ValueError("General knowledge point %s must not carry a conversation_id." % point.get("id"))
            if not general_knowledge and (owner is None or str(owner).strip() == ""):
                raise ValueError("Document point %s has no conversation_id. Refusing upsert." % point.get("id"))

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_client_type(self) -> str:
        return "rag"

    ################ FILTERS ##################
    @abstractmethod
    def filter_general_knowledge(self) -> dict:
        """Condition matching points without a conversation_id."""
        pass

    @abstractmethod
    def filter_conversation(self, conversation_id: str | int) -> dict:
        """Condition matching the points owned by one conversation."""
        pass

    @abstractmethod
    def filter_field_equals(self, key: str, value: Any) -> dict:
        """Condition matching points whose payload field equals value."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_collection(self) -> str:
        """Path of the collection itself; points endpoints hang below it."""
        pass

    @abstractmethod
    def _get_endpoint_collection_exists(self) -> str:
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_collection_payload(self, vector_size: int, distance: str) -> dict:
        pass

    @abstractmethod
    def get_search_payload(self, vector: list[float], limit: int, filters: list[dict]) -> dict:
        pass

    @abstractmethod
    def get_count_payload(self, filters: list[dict]) -> dict:
        pass

    @abstractmethod
    def get_scroll_payload(self, filters: list[dict], limit: int, offset: str | int | None) -> dict:
        """Request for one page of point ids, without payloads or vectors."""
        pass

    @abstractmethod
    def get_delete_payload(self, filter: dict) -> dict:
        pass

    @abstractmethod
    def get_delete_ids_payload(self, ids: list[str]) -> dict:
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_collection_exists(self, raw_response: dict) -> bool:
        pass

    @abstractmethod
    def extract_count(self, raw_response: dict) -> int:
        pass

    @abstractmethod
    def extract_scroll_page(self, raw_response: dict) -> ScrollPage:
        pass

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        """Matches of a search response, best first."""
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self) -> bool:
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_collection_exists(), raise_on_error=True)
        return self.extract_collection_exists(resp.json())

    async def do_create_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        """Create the collection sized for the embedding model in use."""
        await self.do_request(
            method="PUT",
            endpoint=self._get_endpoint_collection(),
            json=self.get_collection_payload(vector_size, distance),
            raise_on_error=True,
        )

    async def do_upsert_points(self, points: list[dict[str, Any]], general_knowledge: bool = False) -> None:
        """Insert or replace points, waiting until they are searchable.

        Args:
            points (list[dict[str, Any]]): Points as {"id", "vector", "payload"} dicts.
            general_knowledge (bool): Write to the shared scope. Otherwise every
                point must name its conversation.

        Raises:
            ValueError: If a point violates the scope, before anything is sent.
        """
        self.check_points_scope(points, general_knowledge)
        await self.do_request(
            method="PUT",
            endpoint=f"{self._get_endpoint_collection()}/points",
            json={"points": points},
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def do_search(self, vector: list[float], limit: int, filters: list[dict]) -> list[SearchHit]:
        """Nearest neighbours of vector among the points matching all filters."""
        resp = await self.do_request(
            method="POST",
            endpoint=f"{self._get_endpoint_collection()}/points/search",
            json=self.get_search_payload(vector, limit, filters),
            raise_on_error=True,
        )
        return self.extract_search_hits(resp.json())

    async def do_count(self, filters: list[dict]) -> int:
        resp = await self.do_request(
            method="POST",
            endpoint=f"{self._get_endpoint_collection()}/points/count",
            json=self.get_count_payload(filters),
            raise_on_error=True,
        )
        return self.extract_count(resp.json())

    async def do_collect_point_ids(self, filters: list[dict]) -> list[str]:
        """Ids of every point matching all filters, following the scroll cursor."""
        point_ids: list[str] = []
        offset: str | int | None = None
        while True:
            resp = await self.do_request(
                method="POST",
                endpoint=f"{self._get_endpoint_collection()}/points/scroll",
                json=self.get_scroll_payload(filters, SCROLL_PAGE_SIZE, offset),
                raise_on_error=True,
            )
            page = self.extract_scroll_page(resp.json())
            point_ids.extend(page.point_ids)
            self.logging.debug("Collected %d point ids from %s so far", len(point_ids), self.get_engine_name())
            if page.next_offset is None:
                return point_ids
            offset = page.next_offset

    async def do_delete_points(self, ids: list[str]) -> None:
        if not ids:
            return
        await self._do_delete(self.get_delete_ids_payload(ids))

    async def do_delete_points_by_filter(self, filter: dict) -> None:
        """Remove all points matching filter, e.g. everything of a deleted conversation."""
        await self._do_delete(self.get_delete_payload(filter))

    async def _do_delete(self, payload: dict) -> None:
        await self.do_request(
            method="POST",
            endpoint=f"{self._get_endpoint_collection()}/points/delete",
            json=payload,
            params={"wait": "true"},
            raise_on_error=True,
        )
